"""
Application lifespan management for startup and shutdown events
"""
import asyncio
import logging
from contextlib import asynccontextmanager

from .core.config import settings
from .db import init_db
from .services.recovery import get_challenge_store, get_notifier

logger = logging.getLogger(__name__)


async def purge_expired_challenges(interval_seconds: int):
    """Periodically reclaim memory held by expired recovery challenges."""
    store = get_challenge_store()
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            removed = store.purge_expired()
        except Exception as e:
            logger.error(f"[Recovery] Challenge purge failed: {e}", exc_info=True)
            continue
        if removed:
            logger.info(f"[Recovery] Purged {removed} expired challenge(s)")


@asynccontextmanager
async def lifespan(app):
    """Manage application lifespan events"""
    logger.info(f"Starting {settings.APP_NAME} API (ENV={settings.ENV})")

    init_db()
    # Fail fast on notifier misconfiguration
    notifier = get_notifier()
    logger.info(f"[Recovery] Notifier: {notifier.name}")

    purge_task = asyncio.create_task(purge_expired_challenges(settings.CHALLENGE_PURGE_INTERVAL_SECONDS))
    try:
        yield
    finally:
        purge_task.cancel()
        try:
            await purge_task
        except asyncio.CancelledError:
            pass
        logger.info(f"{settings.APP_NAME} API stopped")
