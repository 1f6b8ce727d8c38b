from fastapi import APIRouter

# Public: availability, holds and waitlist
from app.api.v1.public.availability import router as availability_router
from app.api.v1.public.holds import router as holds_router
from app.api.v1.public.waitlist import router as waitlist_router

# Admin
from app.api.v1.admin.calendar import business_router, calendar_router
from app.api.v1.admin.bookings import router as admin_bookings_router
from app.api.v1.admin.waitlist import router as admin_waitlist_router
from app.api.v1.admin.audit import router as audit_router
from app.api.v1.admin.sweep import router as sweep_router

api_router = APIRouter()

# --- Public: availability ---
api_router.include_router(availability_router)

# --- Public: holds ---
api_router.include_router(holds_router)

# --- Public: waitlist ---
api_router.include_router(waitlist_router)

# --- Admin ---
api_router.include_router(business_router)
api_router.include_router(calendar_router)
api_router.include_router(admin_bookings_router)
api_router.include_router(admin_waitlist_router)
api_router.include_router(audit_router)
api_router.include_router(sweep_router)
