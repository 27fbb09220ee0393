"""
Subscription Billing API - Main Application

Recurring billing and lifecycle engine for marketplace merchants:
- /api/v1/cron/subscriptions/...  → Scheduler trigger endpoints
- /health                         → Liveness + database check
"""

import asyncio
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy import text

from database import init_db, db
from database.seed import seed_all
from core.config import settings
from core.exceptions import AuthorizationError
from routers.cron import router as cron_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("🚀 Starting Subscription Billing API...")

    try:
        init_db()
        logger.info("✅ Database initialized")

        with db.get_session() as session:
            seed_all(session)
        logger.info("✅ Subscription plans seeded")

    except Exception as e:
        logger.error(f"❌ Database initialization failed: {e}")
        raise

    scheduler = None
    scheduler_task = None
    if settings.scheduler_enabled:
        from core.dependencies import build_billing_controller
        from services.cycle_scheduler import BillingCycleScheduler
        scheduler = BillingCycleScheduler(build_billing_controller, settings.scheduler_run_time)
        scheduler_task = asyncio.create_task(scheduler.run())
        logger.info("📅 Billing cycle scheduler started")

    if not settings.cron_secret:
        logger.warning("⚠️  CRON_SECRET is not set: billing trigger accepts any caller")

    logger.info("✅ Subscription Billing API started successfully!")

    yield

    # Shutdown
    if scheduler is not None:
        scheduler.stop()
        scheduler_task.cancel()
    logger.info("👋 Shutting down Subscription Billing API...")


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        description="""
        Subscription billing and lifecycle engine for marketplace merchants.

        ## Cron API: /api/v1/cron/subscriptions
        * **Full cycle** - renewals, lockouts and trial reminders
        * **auto-renew** - wallet renewals only
        * **lock-expired** - lockouts only
        * **trial-reminder** - trial reminders only
        """,
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AuthorizationError)
    async def authorization_exception_handler(request: Request, exc: AuthorizationError):
        logger.warning(f"Rejected trigger call to {request.url.path}: {exc}")
        return JSONResponse(
            status_code=401,
            content={"detail": "Unauthorized"},
            headers={"WWW-Authenticate": "Bearer"},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}")
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "message": "Internal server error",
                "detail": str(exc) if settings.debug else None
            }
        )

    # ==================== HEALTH ====================

    @app.get("/", tags=["Health"])
    async def root():
        return {
            "message": settings.app_name,
            "version": "1.0.0",
            "status": "running"
        }

    @app.get("/health", tags=["Health"])
    async def health_check():
        try:
            with db.get_session() as session:
                session.execute(text("SELECT 1"))
            return {"status": "healthy", "database": "connected"}
        except Exception as e:
            return JSONResponse(
                status_code=503,
                content={"status": "unhealthy", "database": "disconnected", "error": str(e)}
            )

    # ==================== CRON ROUTES ====================

    app.include_router(
        cron_router,
        prefix="/api/v1/cron/subscriptions",
        tags=["Cron - Subscriptions"]
    )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug
    )
