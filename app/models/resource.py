import uuid
from sqlalchemy import Column, String, Boolean, DateTime, func, Integer, ForeignKey, Uuid
from sqlalchemy.orm import relationship
from app.db.session import Base

class Resource(Base):
    __tablename__ = "resources"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id = Column(Uuid, ForeignKey("businesses.id"), nullable=False, index=True)
    bookable_type_id = Column(Uuid, ForeignKey("bookable_types.id"), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    type = Column(String(50), nullable=False) # room, desk, studio, hall, ...
    capacity = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    business = relationship("Business", back_populates="resources")
    bookable_type = relationship("BookableType", back_populates="resources")
