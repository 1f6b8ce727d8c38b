import enum
import uuid
from datetime import date, datetime, time
from typing import Any, Iterable, Optional

from sqlalchemy.orm import Session

from app.models.audit_log import AuditLog


def _json_safe(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    return value


def snapshot(obj, fields: Iterable[str]) -> dict:
    """JSON-serialisable view of selected attributes of an ORM row."""
    return {name: _json_safe(getattr(obj, name)) for name in fields}


def record(
    db: Session,
    entity_type: str,
    entity_id,
    action_type: str,
    now: datetime,
    before: Optional[dict] = None,
    after: Optional[dict] = None,
    actor: Optional[str] = None,
) -> AuditLog:
    """Add an audit row to the current transaction."""
    row = AuditLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action_type=action_type,
        actor=actor,
        before_json=before,
        after_json=after,
        created_at=now,
    )
    db.add(row)
    return row
