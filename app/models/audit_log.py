import uuid
from sqlalchemy import Column, String, JSON, Uuid
from app.db.session import Base
from app.db.types import UTCDateTime

class AuditLog(Base):
    __tablename__ = "audit_log"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    entity_type = Column(String(50), nullable=False, index=True) # slot_hold, booking, waitlist_entry
    entity_id = Column(Uuid, nullable=True, index=True)
    action_type = Column(String(50), nullable=False, index=True) # acquired, expired, offered, claimed, ...
    actor = Column(String(255), nullable=True)
    before_json = Column(JSON, nullable=True)
    after_json = Column(JSON, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, index=True)
