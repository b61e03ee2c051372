"""Pydantic schemas used by the API."""

from __future__ import annotations

from typing import Dict, Optional

from pydantic import BaseModel, Field

from intake.conversation import Message
from .session import ChatSession


class UtteranceCreate(BaseModel):
    text: str = Field(..., max_length=2000, description="Raw visitor input; surrounding whitespace is trimmed.")


class MessageRead(BaseModel):
    id: str
    role: str
    content: str

    @classmethod
    def from_message(cls, message: Message) -> "MessageRead":
        return cls(id=message.id, role=message.role.value, content=message.content)


class SessionRead(BaseModel):
    id: str
    phase: str
    started: bool
    question_index: int
    collected_fields: Dict[str, str]
    escalation_choice: Optional[str] = None
    pending: bool
    messages: list[MessageRead]

    @classmethod
    def from_session(cls, session: ChatSession) -> "SessionRead":
        state = session.state
        return cls(
            id=session.id,
            phase=state.phase.value,
            started=state.started,
            question_index=state.question_index,
            collected_fields=dict(state.collected_fields),
            escalation_choice=state.escalation_choice.value if state.escalation_choice else None,
            pending=session.pending,
            messages=[MessageRead.from_message(m) for m in session.messages],
        )
