# API Routes
from .approval_flow_routes import router as approval_flow_router
from .job_routes import router as job_router
from .holiday_routes import router as holiday_router

__all__ = [
    "approval_flow_router",
    "job_router",
    "holiday_router",
]
