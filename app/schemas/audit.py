from typing import Optional, Any, Dict
from pydantic import BaseModel, UUID4
from datetime import datetime


class AuditLogEntry(BaseModel):
    id: UUID4
    entity_type: str
    entity_id: Optional[UUID4] = None
    action_type: str
    actor: Optional[str] = None
    before_json: Optional[Dict[str, Any]] = None
    after_json: Optional[Dict[str, Any]] = None
    created_at: datetime

    class Config:
        from_attributes = True
