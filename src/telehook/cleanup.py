import asyncio
import logging
from datetime import UTC, datetime, timedelta

from telehook.capture import CaptureSessionManager
from telehook.config import Settings
from telehook.request_log import SQLiteRequestLogStore

logger = logging.getLogger(__name__)


async def capture_cleanup_task(manager: CaptureSessionManager, settings: Settings) -> None:
    logger.info("Payload capture cleanup started")
    while True:
        try:
            result = manager.sweep()
            if result.expired or result.removed:
                logger.info("Capture cleanup expired %d and removed %d sessions", result.expired, result.removed)
        except Exception:
            logger.exception("Error during payload capture cleanup")
        await asyncio.sleep(settings.capture_cleanup_interval_seconds)


async def log_cleanup_task(store: SQLiteRequestLogStore, settings: Settings) -> None:
    while True:
        if settings.log_retention_days > 0:
            cutoff = datetime.now(UTC) - timedelta(days=settings.log_retention_days)
            try:
                deleted = await store.delete_older_than(cutoff.isoformat())
                if deleted:
                    logger.info("Cleanup deleted %d webhook logs older than %s", deleted, cutoff.date())
            except Exception:
                logger.exception("Error during webhook log cleanup")
        await asyncio.sleep(settings.log_cleanup_interval_hours * 3600)
