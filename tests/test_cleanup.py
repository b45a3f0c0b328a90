import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import aiosqlite
import pytest
from conftest import FakeClock

from telehook.capture import CaptureSessionManager, CaptureStatus
from telehook.cleanup import capture_cleanup_task, log_cleanup_task
from telehook.config import Settings
from telehook.request_log import RequestLogger, RequestMetadata, SQLiteRequestLogStore
from telehook.stats import StatsAggregator

SETTINGS = Settings(
    log_retention_days=30,
    log_cleanup_interval_hours=1,
    capture_cleanup_interval_seconds=60,
)


async def _insert_log(db: aiosqlite.Connection, days_old: int) -> str:
    store = SQLiteRequestLogStore(db)
    request_logger = RequestLogger(store, StatsAggregator(db))
    trace = request_logger.start_request(RequestMetadata(url="/t"))
    trace.created_at = (datetime.now(UTC) - timedelta(days=days_old)).isoformat()
    await request_logger.complete_request(trace, 200, {})
    return trace.request_id


@patch("telehook.cleanup.asyncio.sleep", new_callable=AsyncMock)
async def test_capture_cleanup_expires_sessions(mock_sleep) -> None:
    clock = FakeClock()
    manager = CaptureSessionManager(ttl=timedelta(minutes=5), retention=timedelta(0), clock=clock)
    session = manager.create_session(user_id=1)
    clock.advance(minutes=10)
    mock_sleep.side_effect = [asyncio.CancelledError()]
    with pytest.raises(asyncio.CancelledError):
        await capture_cleanup_task(manager, SETTINGS)

    assert session.status is CaptureStatus.EXPIRED
    assert manager.get_session(session.session_id) is None
    mock_sleep.assert_called_with(SETTINGS.capture_cleanup_interval_seconds)


@patch("telehook.cleanup.asyncio.sleep", new_callable=AsyncMock)
async def test_capture_cleanup_survives_sweep_errors(mock_sleep) -> None:
    manager = MagicMock()
    manager.sweep.side_effect = [RuntimeError("boom"), MagicMock(expired=0, removed=0)]
    mock_sleep.side_effect = [None, asyncio.CancelledError()]
    with pytest.raises(asyncio.CancelledError):
        await capture_cleanup_task(manager, SETTINGS)
    assert manager.sweep.call_count == 2


@patch("telehook.cleanup.asyncio.sleep", new_callable=AsyncMock)
async def test_log_cleanup_deletes_old_logs(mock_sleep, db: aiosqlite.Connection) -> None:
    old = await _insert_log(db, days_old=31)
    recent = await _insert_log(db, days_old=5)
    store = SQLiteRequestLogStore(db)
    mock_sleep.side_effect = [None, asyncio.CancelledError()]
    with pytest.raises(asyncio.CancelledError):
        await log_cleanup_task(store, SETTINGS)

    assert await store.get_by_request_id(old) is None
    assert await store.get_by_request_id(recent) is not None
    mock_sleep.assert_called_with(SETTINGS.log_cleanup_interval_hours * 3600)


@patch("telehook.cleanup.asyncio.sleep", new_callable=AsyncMock)
async def test_log_cleanup_disabled_with_zero_retention(mock_sleep, db: aiosqlite.Connection) -> None:
    old = await _insert_log(db, days_old=400)
    store = SQLiteRequestLogStore(db)
    mock_sleep.side_effect = [asyncio.CancelledError()]
    with pytest.raises(asyncio.CancelledError):
        await log_cleanup_task(store, SETTINGS.model_copy(update={"log_retention_days": 0}))
    assert await store.get_by_request_id(old) is not None
