from uuid import UUID
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from sqlalchemy import func

from app.db.session import get_db
from app.models.audit_log import AuditLog
from app.schemas.audit import AuditLogEntry
from app.schemas.common import PaginatedResponse

router = APIRouter(prefix="/admin/audit-log", tags=["Admin - Audit"])


@router.get("/", response_model=PaginatedResponse[AuditLogEntry])
def list_audit_log(
    entity_type: Optional[str] = None,
    entity_id: Optional[UUID] = None,
    action_type: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
):
    query = db.query(AuditLog)
    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)
    if entity_id:
        query = query.filter(AuditLog.entity_id == entity_id)
    if action_type:
        query = query.filter(AuditLog.action_type == action_type)

    total = query.with_entities(func.count(AuditLog.id)).scalar()
    rows = query.order_by(AuditLog.created_at.desc()).offset((page - 1) * limit).limit(limit).all()

    return PaginatedResponse(
        data=[AuditLogEntry.model_validate(r) for r in rows],
        total=total,
        page=page,
        limit=limit,
        total_pages=-(-total // limit) if total else 0,
    )
