"""
FastAPI Main Application Entry Point for DJ Flow.

The approval and scheduling backend for DJ job tickets:
- Per-project approval flows with multi-level approver pools
- Auto assignment after approval (skip-flows, team leads, department managers)
- Urgent job SLA cascade over the assignee's queue
- Holiday-aware working day due dates
- In-app and Slack notifications
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from djflow.core.config import settings
from djflow.core.exceptions import DJFlowException
from djflow.api.routes import (
    approval_flow_router,
    job_router,
    holiday_router,
)


# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info(f"🚀 Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Debug mode: {settings.debug}")
    logger.info(f"Notifications enabled: {settings.notifications_enabled}")
    logger.info(f"Slack enabled: {settings.slack_enabled}")
    logger.info(f"Urgent shift: {settings.urgent_shift_days} working days")

    yield

    logger.info("👋 Shutting down...")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    # DJ Flow - Approval & Scheduling Core

    ## Job Lifecycle
    draft → pending_approval → approved → assigned → in_progress → completed

    - **Skip-flow**: job types that go straight to the matrix assignee
    - **Levels**: each level has an approver pool and ANY/ALL logic
    - **Rework**: a rejected job returns to the requester and starts a new round

    ## Urgent Jobs
    Assigning an urgent job pushes the assignee's other active jobs
    back by a fixed number of working days. Every shift is logged.

    ## Acting User
    Commands read the acting user from the `X-User-Id` header.
    """,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)


# Configure CORS for frontend communication
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Global exception handler for DJFlowExceptions
@app.exception_handler(DJFlowException)
async def djflow_exception_handler(request, exc: DJFlowException):
    """Handle all DJFlowException subclasses."""
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
    )


# Include API routers
app.include_router(approval_flow_router)
app.include_router(job_router)
app.include_router(holiday_router)


# Health check endpoint
@app.get("/health", tags=["System"])
async def health_check():
    """Health check endpoint for monitoring."""
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
        "debug": settings.debug,
        "notifications": {
            "enabled": settings.notifications_enabled,
            "slack": settings.slack_enabled,
        },
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


# Root endpoint
@app.get("/", tags=["System"])
async def root():
    """Root endpoint with API information."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "docs": "/docs" if settings.debug else "Docs disabled in production",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "djflow.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
