from fastapi import Request

from app.services.engine import SchedulingEngine


def get_engine(request: Request) -> SchedulingEngine:
    """The engine built at startup, shared by every request."""
    return request.app.state.engine
