"""Conversation state machine for the scripted lead-intake dialog."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Tuple
from uuid import uuid4

from intake.classifier import EscalationChoice, OfficeHours, classify_escalation, is_email_shaped
from intake.script import EMAIL_FIELD, DiscoveryScript

logger = logging.getLogger("intake.conversation")


class Phase(str, Enum):
    DISCOVERY = "discovery"
    AWAITING_EMAIL = "awaiting_email"
    AWAITING_ESCALATION_CHOICE = "awaiting_escalation_choice"
    COMPLETED = "completed"


class Role(str, Enum):
    USER = "user"
    BOT = "bot"


@dataclass(frozen=True)
class Message:
    """A single chat bubble shown to the visitor."""

    role: Role
    content: str
    id: str = field(default_factory=lambda: uuid4().hex)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(Role.USER, content)

    @classmethod
    def bot(cls, content: str) -> "Message":
        return cls(Role.BOT, content)


@dataclass(frozen=True)
class ConversationState:
    """Snapshot of one conversation.

    Instances are never mutated; transitions return a new state. Treat
    ``collected_fields`` as read-only.
    """

    phase: Phase = Phase.DISCOVERY
    collected_fields: Dict[str, str] = field(default_factory=dict)
    question_index: int = 0
    started: bool = False
    escalation_choice: Optional[EscalationChoice] = None

    @property
    def completed(self) -> bool:
        return self.phase is Phase.COMPLETED

    def with_field(self, key: str, value: str, **changes) -> "ConversationState":
        fields_ = dict(self.collected_fields)
        fields_[key] = value
        return replace(self, collected_fields=fields_, **changes)


@dataclass(frozen=True)
class Turn:
    """Result of feeding the machine: the next state and the bot replies, in order."""

    state: ConversationState
    replies: Tuple[str, ...] = ()


class DiscoveryEngine:
    """Drives a :class:`ConversationState` through the intake script.

    The engine holds no per-conversation data, so one instance can serve
    every session that shares a script and office-hours rule.
    """

    def __init__(self, script: Optional[DiscoveryScript] = None, office_hours: Optional[OfficeHours] = None):
        self.script = script or DiscoveryScript()
        self.office_hours = office_hours or OfficeHours()

    def activate(self, state: ConversationState) -> Turn:
        """Emit the opening question the first time the chat becomes visible."""
        if state.started or state.phase is not Phase.DISCOVERY:
            return Turn(state)
        first = self.script.question_at(0)
        return Turn(replace(state, started=True), (first.prompt,))

    def transition(self, state: ConversationState, utterance: str, *, now: datetime) -> Turn:
        """Apply one visitor utterance to ``state``.

        ``now`` is only consulted when a valid email is received, to decide
        whether live escalation is offered.
        """

        text = (utterance or "").strip()
        if not text:
            return Turn(state)

        if state.phase is Phase.DISCOVERY:
            turn = self._discovery(state, text)
        elif state.phase is Phase.AWAITING_EMAIL:
            turn = self._awaiting_email(state, text, now)
        elif state.phase is Phase.AWAITING_ESCALATION_CHOICE:
            turn = self._awaiting_escalation(state, text)
        else:
            turn = Turn(state, (self.script.closed,) if self.script.closed else ())

        if turn.state.phase is not state.phase:
            logger.debug("Conversation phase %s -> %s", state.phase.value, turn.state.phase.value)
        return turn

    def _discovery(self, state: ConversationState, text: str) -> Turn:
        question = self.script.question_at(state.question_index)
        next_index = state.question_index + 1
        if next_index < len(self.script):
            new_state = state.with_field(question.key, text, question_index=next_index, started=True)
            return Turn(new_state, (self.script.question_at(next_index).prompt,))
        new_state = state.with_field(
            question.key,
            text,
            question_index=len(self.script),
            started=True,
            phase=Phase.AWAITING_EMAIL,
        )
        return Turn(new_state, (self.script.email_prompt,))

    def _awaiting_email(self, state: ConversationState, text: str, now: datetime) -> Turn:
        if not is_email_shaped(text):
            return Turn(state, (self.script.invalid_email,))
        if self.office_hours.is_open(now):
            new_state = state.with_field(EMAIL_FIELD, text, phase=Phase.AWAITING_ESCALATION_CHOICE)
            return Turn(new_state, (self.script.escalation_offer,))
        new_state = state.with_field(EMAIL_FIELD, text, phase=Phase.COMPLETED)
        return Turn(new_state, (self.script.offline,))

    def _awaiting_escalation(self, state: ConversationState, text: str) -> Turn:
        choice = classify_escalation(text)
        if choice is None:
            return Turn(state, (self.script.clarify_escalation,))
        reply = self.script.talk_now if choice is EscalationChoice.TALK_NOW else self.script.email_later
        return Turn(replace(state, escalation_choice=choice, phase=Phase.COMPLETED), (reply,))


__all__ = ["ConversationState", "DiscoveryEngine", "Message", "Phase", "Role", "Turn"]
