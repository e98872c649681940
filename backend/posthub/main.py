"""FastAPI application entry point."""
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from . import models
from .auth import router as auth_router
from .config import get_settings
from .database import AsyncSessionLocal, engine
from .errors import register_exception_handlers
from .logging import get_logger
from .mailer import EmailService
from .routers.comments import router as comments_router
from .routers.follows import router as follows_router
from .routers.likes import router as likes_router
from .routers.posts import router as posts_router
from .routers.users import router as users_router
from .tasks import create_scheduler

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Ensure tables exist, then run the account sweeper until shutdown."""

    settings = get_settings()
    async with engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.create_all)

    app.state.email_service = EmailService.from_settings(settings)
    if not app.state.email_service.is_configured:
        logger.warning("smtp_not_configured", detail="emails will be logged, not sent")

    scheduler = None
    if settings.scheduler_enabled:
        scheduler = create_scheduler(settings, AsyncSessionLocal)
        scheduler.start()
        logger.info("scheduler_started", interval_minutes=settings.sweep_interval_minutes)

    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.shutdown(wait=False)
        await engine.dispose()


app = FastAPI(title="PostHub API", version="0.1.0", lifespan=lifespan)
register_exception_handlers(app)
app.include_router(auth_router)
app.include_router(users_router)
app.include_router(posts_router)
app.include_router(comments_router)
app.include_router(likes_router)
app.include_router(follows_router)


@app.get("/health", tags=["system"])
async def healthcheck() -> dict[str, str]:
    """Simple readiness probe for uptime checks."""

    return {"status": "ok"}
