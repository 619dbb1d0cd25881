from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from slipsafe.api.deps import get_current_user
from slipsafe.core.db import db_session
from slipsafe.modules.audit.schemas import AuditEventOut
from slipsafe.modules.audit.service import list_events_for_user
from slipsafe.modules.identity.models import User

router = APIRouter(tags=["audit"])


@router.get("/activity", response_model=list[AuditEventOut])
def list_activity_endpoint(
    limit: int = Query(default=100, ge=1, le=500),
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> list[AuditEventOut]:
    events = list_events_for_user(session, user_id=user.id, limit=limit)
    return [AuditEventOut.model_validate(e, from_attributes=True) for e in events]
