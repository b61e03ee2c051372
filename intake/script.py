"""Discovery script definitions: the questions asked and the fixed bot replies."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import yaml

logger = logging.getLogger("intake.script")

EMAIL_FIELD = "email"


@dataclass(frozen=True)
class Question:
    """One entry of the discovery interview."""

    key: str
    prompt: str


DEFAULT_QUESTIONS: Tuple[Question, ...] = (
    Question("project_type", "What type of project are you working on?"),
    Question("brand_name", "What is your brand name?"),
    Question("industry", "Which industry is this for?"),
    Question("budget", "What is your estimated budget?"),
    Question("timeline", "What is your timeline?"),
)


@dataclass(frozen=True)
class DiscoveryScript:
    """Ordered questions plus every canned reply the bot can send."""

    questions: Tuple[Question, ...] = DEFAULT_QUESTIONS
    email_prompt: str = "Thanks! I've collected all the details. What's the best email to reach you?"
    invalid_email: str = "That doesn't look like a valid email. Could you try again?"
    escalation_offer: str = (
        "Would you like to talk to someone now, or should we follow up later by email?"
    )
    offline: str = "Our team is currently offline. We'll follow up by email as soon as possible."
    talk_now: str = "Got it. Connecting you to a human now…"
    email_later: str = "No problem. We'll follow up by email soon."
    clarify_escalation: str = (
        "I didn't quite get that. Would you like to 'talk now' or 'email later'?"
    )
    # Reply once the conversation is over; None means further input is ignored.
    closed: Optional[str] = "This conversation has ended. We'll be in touch by email."
    name: str = field(default="default", compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "questions", tuple(self.questions))
        if not self.questions:
            raise ValueError(f"Script '{self.name}' defines no questions")
        seen = set()
        for question in self.questions:
            if not question.key or not question.prompt:
                raise ValueError(f"Script '{self.name}' has a question without key or prompt")
            if question.key == EMAIL_FIELD:
                raise ValueError(f"Question key '{EMAIL_FIELD}' is reserved for the hand-off")
            if question.key in seen:
                raise ValueError(f"Duplicate question key '{question.key}' in script '{self.name}'")
            seen.add(question.key)

    def __len__(self) -> int:
        return len(self.questions)

    def question_at(self, index: int) -> Question:
        return self.questions[index]

    @property
    def field_keys(self) -> Tuple[str, ...]:
        return tuple(q.key for q in self.questions) + (EMAIL_FIELD,)


_REPLY_FIELDS = tuple(f.name for f in fields(DiscoveryScript) if f.name not in {"questions", "name"})


def script_from_mapping(data: Dict[str, Any], *, name: str = "custom") -> DiscoveryScript:
    """Build a :class:`DiscoveryScript` from parsed YAML/JSON data.

    Expected shape::

        questions:
          - {key: project_type, prompt: "What type of project ...?"}
        messages:
          email_prompt: "..."
          closed: null

    Unknown reply names are rejected so typos surface at startup.
    """

    if not isinstance(data, dict):
        raise ValueError("Script data must be a mapping")

    raw_questions = data.get("questions") or []
    questions = []
    for item in raw_questions:
        if not isinstance(item, dict):
            raise ValueError(f"Question entry must be a mapping, got {item!r}")
        questions.append(Question(key=str(item.get("key") or ""), prompt=str(item.get("prompt") or "")))

    messages = data.get("messages") or {}
    unknown = set(messages) - set(_REPLY_FIELDS)
    if unknown:
        raise ValueError(f"Unknown script messages: {', '.join(sorted(unknown))}")

    return DiscoveryScript(questions=tuple(questions), name=str(data.get("name") or name), **messages)


def load_script(path: Optional[Union[str, Path]] = None) -> DiscoveryScript:
    """Load a discovery script from YAML, or return the built-in one.

    A configured path that does not exist falls back to the default script
    with a warning; a file that exists but is malformed raises ``ValueError``.
    """

    if path is None:
        return DiscoveryScript()

    script_path = Path(path)
    if not script_path.exists():
        logger.warning("Discovery script not found at %s, using defaults", script_path)
        return DiscoveryScript()

    with open(script_path, encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Could not parse discovery script {script_path}: {exc}") from exc

    script = script_from_mapping(data, name=script_path.stem)
    logger.info("Loaded discovery script '%s' (%d questions)", script.name, len(script))
    return script


__all__ = [
    "DEFAULT_QUESTIONS",
    "EMAIL_FIELD",
    "DiscoveryScript",
    "Question",
    "load_script",
    "script_from_mapping",
]
