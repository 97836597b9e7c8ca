import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel


class AuditLogResponse(BaseModel):
    id: uuid.UUID
    entity_type: str
    entity_id: uuid.UUID
    action: str
    actor_id: Optional[uuid.UUID] = None
    source: Optional[str] = None
    changes_json: Optional[Dict[str, Any]] = None
    timestamp_utc: datetime
    context: Optional[Dict[str, Any]] = None
    integrity_hash: Optional[str] = None

    class Config:
        from_attributes = True
