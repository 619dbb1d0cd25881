from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel


class AuditEventOut(BaseModel):
    id: uuid.UUID
    event_type: str
    receipt_id: uuid.UUID | None
    claim_id: uuid.UUID | None
    payload_json: dict
    occurred_at: datetime
