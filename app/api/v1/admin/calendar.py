from uuid import UUID
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from app.db.session import get_db
from app.models.business import Business, BookableType
from app.models.resource import Resource
from app.models.calendar import AvailabilityWindow, AvailabilityOverride, BlackoutPeriod
from app.schemas.calendar import (
    BusinessCreate,
    Business as BusinessSchema,
    BookableTypeCreate,
    BookableType as BookableTypeSchema,
    ResourceCreate,
    Resource as ResourceSchema,
    AvailabilityWindowCreate,
    AvailabilityWindow as AvailabilityWindowSchema,
    AvailabilityOverrideCreate,
    AvailabilityOverride as AvailabilityOverrideSchema,
    BlackoutPeriodCreate,
    BlackoutPeriod as BlackoutPeriodSchema,
)

business_router = APIRouter(prefix="/admin/businesses", tags=["Admin - Businesses"])
calendar_router = APIRouter(prefix="/admin", tags=["Admin - Calendar"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _get_business_or_404(db: Session, business_id: UUID) -> Business:
    business = db.query(Business).filter(Business.id == business_id).first()
    if not business:
        raise HTTPException(status_code=404, detail="Business not found")
    return business


def _check_resource(db: Session, business: Business, resource_id: Optional[UUID]) -> None:
    if resource_id is None:
        return
    resource = db.query(Resource).filter(Resource.id == resource_id).first()
    if not resource or resource.business_id != business.id:
        raise HTTPException(status_code=400, detail="Resource does not belong to this business")


def _check_bookable_type(db: Session, business: Business, bookable_type_id: Optional[UUID]) -> None:
    if bookable_type_id is None:
        return
    bookable_type = db.query(BookableType).filter(BookableType.id == bookable_type_id).first()
    if not bookable_type or bookable_type.business_id != business.id:
        raise HTTPException(status_code=400, detail="Bookable type does not belong to this business")


def _save(db: Session, obj):
    db.add(obj)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Conflicts with an existing record")
    db.refresh(obj)
    return obj


# ---------------------------------------------------------------------------
# Businesses
# ---------------------------------------------------------------------------


@business_router.post("/", response_model=BusinessSchema, status_code=status.HTTP_201_CREATED)
def create_business(data: BusinessCreate, db: Session = Depends(get_db)):
    return _save(db, Business(**data.model_dump()))


@business_router.get("/", response_model=List[BusinessSchema])
def list_businesses(db: Session = Depends(get_db)):
    return db.query(Business).filter(Business.is_active == True).order_by(Business.name).all()


@business_router.get("/{id}", response_model=BusinessSchema)
def get_business(id: UUID, db: Session = Depends(get_db)):
    return _get_business_or_404(db, id)


# ---------------------------------------------------------------------------
# Bookable types & resources
# ---------------------------------------------------------------------------


@calendar_router.post("/bookable-types", response_model=BookableTypeSchema, status_code=status.HTTP_201_CREATED)
def create_bookable_type(data: BookableTypeCreate, db: Session = Depends(get_db)):
    _get_business_or_404(db, data.business_id)
    return _save(db, BookableType(**data.model_dump()))


@calendar_router.post("/resources", response_model=ResourceSchema, status_code=status.HTTP_201_CREATED)
def create_resource(data: ResourceCreate, db: Session = Depends(get_db)):
    business = _get_business_or_404(db, data.business_id)
    _check_bookable_type(db, business, data.bookable_type_id)
    return _save(db, Resource(**data.model_dump()))


@calendar_router.get("/resources", response_model=List[ResourceSchema])
def list_resources(business_id: Optional[UUID] = None, db: Session = Depends(get_db)):
    query = db.query(Resource).filter(Resource.is_active == True)
    if business_id:
        query = query.filter(Resource.business_id == business_id)
    return query.order_by(Resource.name).all()


@calendar_router.delete("/resources/{id}", status_code=status.HTTP_204_NO_CONTENT)
def deactivate_resource(id: UUID, db: Session = Depends(get_db)):
    resource = db.query(Resource).filter(Resource.id == id).first()
    if not resource:
        raise HTTPException(status_code=404, detail="Resource not found")
    resource.is_active = False
    db.commit()


# ---------------------------------------------------------------------------
# Windows, overrides, blackouts
# ---------------------------------------------------------------------------


@calendar_router.post("/windows", response_model=AvailabilityWindowSchema, status_code=status.HTTP_201_CREATED)
def create_window(data: AvailabilityWindowCreate, db: Session = Depends(get_db)):
    business = _get_business_or_404(db, data.business_id)
    _check_resource(db, business, data.resource_id)
    _check_bookable_type(db, business, data.bookable_type_id)
    return _save(db, AvailabilityWindow(**data.model_dump()))


@calendar_router.post("/overrides", response_model=AvailabilityOverrideSchema, status_code=status.HTTP_201_CREATED)
def create_override(data: AvailabilityOverrideCreate, db: Session = Depends(get_db)):
    business = _get_business_or_404(db, data.business_id)
    _check_resource(db, business, data.resource_id)
    if not data.is_unavailable and not data.windows:
        raise HTTPException(status_code=400, detail="An open override needs at least one window")

    override = AvailabilityOverride(
        business_id=data.business_id,
        resource_id=data.resource_id,
        override_date=data.override_date,
        is_unavailable=data.is_unavailable,
        windows=[{"start": w.start.isoformat(), "end": w.end.isoformat()} for w in data.windows],
        notes=data.notes,
    )
    return _save(db, override)


@calendar_router.post("/blackouts", response_model=BlackoutPeriodSchema, status_code=status.HTTP_201_CREATED)
def create_blackout(data: BlackoutPeriodCreate, db: Session = Depends(get_db)):
    if data.business_id:
        business = _get_business_or_404(db, data.business_id)
        _check_resource(db, business, data.resource_id)
    elif not db.query(Resource).filter(Resource.id == data.resource_id).first():
        raise HTTPException(status_code=404, detail="Resource not found")
    return _save(db, BlackoutPeriod(**data.model_dump()))
