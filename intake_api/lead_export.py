# intake_api/lead_export.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, Optional

import httpx
from pydantic import BaseModel, Field

from intake.conversation import ConversationState

logger = logging.getLogger("intake.lead_export")


class LeadRecord(BaseModel):
    """Answers collected by a finished conversation."""

    session_id: str
    fields: Dict[str, str]
    escalation_choice: Optional[str] = None
    completed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_state(cls, session_id: str, state: ConversationState) -> "LeadRecord":
        choice = state.escalation_choice.value if state.escalation_choice else None
        return cls(session_id=session_id, fields=dict(state.collected_fields), escalation_choice=choice)


@asynccontextmanager
async def _client_context(client: Optional[httpx.AsyncClient], timeout: float = 10.0):
    if client is not None:
        yield client
        return

    managed_client = httpx.AsyncClient(timeout=timeout)
    try:
        yield managed_client
    finally:
        await managed_client.aclose()


def _log_locally(lead: LeadRecord) -> None:
    logger.info("LEAD %s", lead.model_dump_json())


async def export_lead(
    lead: LeadRecord,
    *,
    webhook_url: Optional[str],
    token: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> None:
    """POST ``lead`` to ``webhook_url``; log it locally when that is not possible.

    Delivery is best-effort: errors are logged and never raised.
    """

    if not webhook_url:
        _log_locally(lead)
        return

    headers = {"Content-Type": "application/json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"

    try:
        async with _client_context(client) as http_client:
            response = await http_client.post(
                webhook_url,
                headers=headers,
                content=lead.model_dump_json(),
            )
            response.raise_for_status()
    except Exception:
        logger.exception("Lead webhook delivery failed; logged locally")
        _log_locally(lead)
    else:
        logger.info("Exported lead for session %s", lead.session_id)
