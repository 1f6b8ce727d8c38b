from fastapi import APIRouter, Depends

from app.api.deps import get_engine
from app.services.engine import SchedulingEngine
from app.schemas.sweep import SweepResult

router = APIRouter(prefix="/admin/sweep", tags=["Admin - Maintenance"])


@router.post("/", response_model=SweepResult)
def trigger_sweep(engine: SchedulingEngine = Depends(get_engine)):
    """Expire overdue holds and offers now instead of waiting for the next tick."""
    return engine.sweep()
