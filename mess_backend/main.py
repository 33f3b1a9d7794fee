"""Mess Leave Service — FastAPI Application Factory."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Model modules register their tables on Base.metadata
import mess_backend.auth.models  # noqa: F401
import mess_backend.common.audit  # noqa: F401
import mess_backend.leave.models  # noqa: F401
import mess_backend.mess.models  # noqa: F401
from mess_backend.common.exceptions import register_exception_handlers
from mess_backend.common.log_config import configure_logging
from mess_backend.common.rate_limit import limiter
from mess_backend.config import settings
from mess_backend.database import engine
from mess_backend.leave.router import owner_router as leave_review_router
from mess_backend.leave.router import router as leave_router
from mess_backend.mess.router import router as off_day_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    yield
    await engine.dispose()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    configure_logging()

    app = FastAPI(
        title="Mess Leave Service",
        description="Meal-plan leave requests, savings proration and subscription extensions",
        version="1.0.0",
        docs_url="/api/docs" if settings.ENVIRONMENT != "production" else None,
        redoc_url="/api/redoc" if settings.ENVIRONMENT != "production" else None,
        lifespan=lifespan,
    )

    # Exception handlers (RFC 7807, including 429 from slowapi)
    register_exception_handlers(app)

    # Rate limiting (slowapi)
    app.state.limiter = limiter

    # CORS
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

    # Register routers
    app.include_router(leave_router, prefix="/api/v1/leave-requests", tags=["leave"])
    app.include_router(
        leave_review_router, prefix="/api/v1/mess/leave-requests", tags=["leave-review"],
    )
    app.include_router(off_day_router, prefix="/api/v1/mess/off-days", tags=["off-days"])

    return app


app = create_app()
