"""Stateless helpers that interpret free-text chat input."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import FrozenSet, Optional

import pytz

TALK_NOW_KEYWORDS = ("talk", "now", "human", "connect")
EMAIL_LATER_KEYWORDS = ("email", "later", "not now")


def _keyword_rx(keywords) -> re.Pattern:
    # Anchored at a word start so "know" does not count as "now"; suffixes
    # ("talking", "emails") still match.
    return re.compile(r"\b(?:" + "|".join(re.escape(k) for k in keywords) + ")", re.IGNORECASE)


_TALK_NOW_RX = _keyword_rx(TALK_NOW_KEYWORDS)
_EMAIL_LATER_RX = _keyword_rx(EMAIL_LATER_KEYWORDS)


class EscalationChoice(str, Enum):
    """Outcome picked by the visitor when a live hand-off is offered."""

    TALK_NOW = "talk_now"
    EMAIL_LATER = "email_later"


def is_email_shaped(text: str) -> bool:
    """Return True when ``text`` contains both an ``@`` and a ``.``.

    This is the whole rule. It is intentionally permissive and is not an
    RFC 5322 check: ``"a@b.c"`` and even ``".@"`` pass.
    """

    s = (text or "").strip()
    return "@" in s and "." in s


def classify_escalation(text: str) -> Optional[EscalationChoice]:
    """Map a reply to the escalation offer onto an :class:`EscalationChoice`.

    Case-insensitive keyword matching where a keyword must start a word. The
    talk-now keywords are checked first, so a reply matching both sets
    (``"not now"`` included) resolves to ``TALK_NOW``. Returns ``None`` when
    nothing matches.
    """

    s = text or ""
    if _TALK_NOW_RX.search(s):
        return EscalationChoice.TALK_NOW
    if _EMAIL_LATER_RX.search(s):
        return EscalationChoice.EMAIL_LATER
    return None


@dataclass(frozen=True)
class OfficeHours:
    """Weekly window during which a human can pick up the conversation.

    ``weekdays`` uses :meth:`datetime.weekday` numbering (Monday is 0). The
    hour range is half-open: ``open_hour <= hour < close_hour``.
    """

    timezone: str = "Europe/Paris"
    weekdays: FrozenSet[int] = frozenset({0, 1, 2, 3, 4})
    open_hour: int = 9
    close_hour: int = 18

    def __post_init__(self) -> None:
        pytz.timezone(self.timezone)  # raises UnknownTimeZoneError early
        if not 0 <= self.open_hour <= self.close_hour <= 24:
            raise ValueError(
                f"Invalid office hours {self.open_hour}-{self.close_hour}; "
                "expected 0 <= open <= close <= 24"
            )
        if any(day not in range(7) for day in self.weekdays):
            raise ValueError(f"Invalid weekdays {sorted(self.weekdays)}; expected 0-6")

    def localize(self, moment: datetime) -> datetime:
        """Return ``moment`` expressed in the office time zone.

        Naive datetimes are taken to be UTC.
        """

        if moment.tzinfo is None:
            moment = pytz.utc.localize(moment)
        return moment.astimezone(pytz.timezone(self.timezone))

    def is_open(self, moment: datetime) -> bool:
        local = self.localize(moment)
        return local.weekday() in self.weekdays and self.open_hour <= local.hour < self.close_hour


__all__ = [
    "EMAIL_LATER_KEYWORDS",
    "TALK_NOW_KEYWORDS",
    "EscalationChoice",
    "OfficeHours",
    "classify_escalation",
    "is_email_shaped",
]
