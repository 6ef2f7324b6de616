"""Leave Approvals — FastAPI Application Factory."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.common.exceptions import register_exception_handlers
from backend.common.rate_limit import limiter
from backend.config import configure_logging, settings
from backend.database import async_session_factory
from backend.delegation.router import router as delegation_router
from backend.escalation.router import router as escalation_router
from backend.escalation.scheduler import EscalationScheduler
from backend.holiday_planning.router import router as holiday_planning_router
from backend.leave.router import router as leave_router
from backend.notifications.router import router as notifications_router
from backend.rollover.router import router as rollover_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    configure_logging()
    scheduler = None
    if settings.ESCALATION_SCHEDULER_ENABLED:
        scheduler = EscalationScheduler(
            async_session_factory,
            interval_hours=settings.ESCALATION_INTERVAL_HOURS,
        )
        scheduler.start()
    app.state.escalation_scheduler = scheduler
    yield
    if scheduler is not None:
        await scheduler.stop()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Leave Approvals",
        description=f"{settings.COMPANY_NAME} leave, escalation and holiday planning API",
        version="1.0.0",
        docs_url="/api/docs" if settings.ENVIRONMENT != "production" else None,
        redoc_url="/api/redoc" if settings.ENVIRONMENT != "production" else None,
        lifespan=lifespan,
    )

    # Problem-detail handlers, including slowapi 429s
    register_exception_handlers(app)
    app.state.limiter = limiter

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Health check (no auth)
    @app.get("/api/v1/health", tags=["system"])
    async def health_check():
        return {
            "status": "healthy",
            "version": "1.0.0",
            "environment": settings.ENVIRONMENT,
        }

    app.include_router(leave_router, prefix="/api/v1/leave", tags=["leave"])
    app.include_router(delegation_router, prefix="/api/v1/delegations", tags=["delegations"])
    app.include_router(escalation_router, prefix="/api/v1/escalation", tags=["escalation"])
    app.include_router(
        holiday_planning_router, prefix="/api/v1/holiday-planning", tags=["holiday-planning"],
    )
    app.include_router(rollover_router, prefix="/api/v1/rollover", tags=["rollover"])
    app.include_router(notifications_router, prefix="/api/v1/notifications", tags=["notifications"])

    return app


app = create_app()
