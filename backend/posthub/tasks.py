"""Background jobs: removal of accounts that were never activated."""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .config import Settings
from .credentials import CredentialStore
from .logging import get_logger, log_error
from .models import utcnow

logger = get_logger(__name__)

SWEEP_JOB_ID = "sweep_unactivated_accounts"


async def sweep_unactivated_accounts(
    session_factory: async_sessionmaker[AsyncSession],
    max_age: timedelta,
    now: Optional[datetime] = None,
) -> int:
    """Delete inactive accounts created more than ``max_age`` ago.

    Returns the number of deleted accounts. Failures are logged and reported
    as zero so a bad run never takes the scheduler down with it.
    """

    cutoff = (now or utcnow()) - max_age
    try:
        async with session_factory() as session:
            deleted = await CredentialStore(session).delete_unactivated(cutoff)
    except Exception as exc:
        log_error(exc, "tasks.sweep_unactivated_accounts")
        return 0

    if deleted > 0:
        logger.info("unactivated_accounts_deleted", count=deleted, cutoff=cutoff.isoformat())
    return deleted


def create_scheduler(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIOScheduler:
    """Build a scheduler running the sweep every ``sweep_interval_minutes``."""

    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        sweep_unactivated_accounts,
        IntervalTrigger(minutes=settings.sweep_interval_minutes),
        kwargs={
            "session_factory": session_factory,
            "max_age": timedelta(hours=settings.unactivated_account_max_age_hours),
        },
        id=SWEEP_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    return scheduler
