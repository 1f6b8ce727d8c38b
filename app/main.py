import asyncio
import logging

from fastapi import FastAPI
from contextlib import asynccontextmanager
from app.db.init_db import create_database
from app.db.base import Base
from app.db.session import engine, SessionLocal
from app.core.config import settings
from app.core.errors import SchedulingError, scheduling_error_handler
from app.api.v1.router import api_router
from app.services.engine import build_engine
from app.services.sweeper import expiry_sweep_loop

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: Ensure DB exists and create tables
    if settings.CREATE_DATABASE_ON_STARTUP and settings.DATABASE_URL.startswith("postgresql"):
        create_database()
    Base.metadata.create_all(bind=engine)

    # Expire overdue holds and offers in the background
    sweep_task = asyncio.create_task(
        expiry_sweep_loop(app.state.engine, settings.SWEEP_INTERVAL_SECONDS)
    )
    yield

    # Shutdown: cancel background task
    sweep_task.cancel()
    try:
        await sweep_task
    except asyncio.CancelledError:
        pass


from fastapi.middleware.cors import CORSMiddleware

app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)
app.state.engine = build_engine(SessionLocal, settings)

# Set all CORS enabled origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(SchedulingError, scheduling_error_handler)

app.include_router(api_router, prefix=settings.API_V1_STR)

@app.get("/")
def read_root():
    return {"service": settings.PROJECT_NAME}
