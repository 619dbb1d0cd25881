from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from slipsafe.modules.audit.models import AuditEvent


def record_event(
    session: Session,
    *,
    event_type: str,
    actor_user_id: uuid.UUID | None,
    receipt_id: uuid.UUID | None = None,
    claim_id: uuid.UUID | None = None,
    payload: dict[str, Any] | None = None,
) -> AuditEvent:
    """Stage an audit row on ``session``; the caller's commit persists it."""
    event = AuditEvent(
        event_type=event_type,
        actor_user_id=actor_user_id,
        receipt_id=receipt_id,
        claim_id=claim_id,
        payload_json=payload or {},
    )
    session.add(event)
    return event


def list_events_for_user(
    session: Session, *, user_id: uuid.UUID, limit: int = 100
) -> list[AuditEvent]:
    return list(
        session.scalars(
            select(AuditEvent)
            .where(AuditEvent.actor_user_id == user_id)
            .order_by(AuditEvent.occurred_at.desc())
            .limit(limit)
        )
    )
