import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta

import aiosqlite

logger = logging.getLogger(__name__)

GLOBAL_SCOPE = "global"

_COLUMNS = (
    "date,webhook_id,total_requests,successful_requests,failed_requests,validation_failures,"
    "delivery_failures,total_processing_ms,min_processing_ms,max_processing_ms"
)

# Counters are incremented inside the statement so that two writers on the
# same (date, scope) key can never read-modify-write over each other.
_UPSERT = (
    "INSERT INTO webhook_stats(date,scope,webhook_id,total_requests,successful_requests,"
    "failed_requests,validation_failures,delivery_failures,total_processing_ms,"
    "min_processing_ms,max_processing_ms,created_at,updated_at) "
    "VALUES(?,?,?,1,?,?,?,?,?,?,?,?,?) "
    "ON CONFLICT(date,scope) DO UPDATE SET "
    "total_requests=total_requests+1,"
    "successful_requests=successful_requests+excluded.successful_requests,"
    "failed_requests=failed_requests+excluded.failed_requests,"
    "validation_failures=validation_failures+excluded.validation_failures,"
    "delivery_failures=delivery_failures+excluded.delivery_failures,"
    "total_processing_ms=total_processing_ms+excluded.total_processing_ms,"
    "min_processing_ms=MIN(min_processing_ms,excluded.min_processing_ms),"
    "max_processing_ms=MAX(max_processing_ms,excluded.max_processing_ms),"
    "updated_at=excluded.updated_at"
)


@dataclass
class DailyStat:
    date: str
    webhook_id: int | None
    total_requests: int
    successful_requests: int
    failed_requests: int
    validation_failures: int
    delivery_failures: int
    total_processing_ms: int
    min_processing_ms: int
    max_processing_ms: int

    @property
    def avg_processing_ms(self) -> int:
        if not self.total_requests:
            return 0
        return self.total_processing_ms // self.total_requests

    @property
    def success_rate(self) -> float:
        if not self.total_requests:
            return 0.0
        return self.successful_requests / self.total_requests * 100


def _scope(webhook_id: int | None) -> str:
    return GLOBAL_SCOPE if webhook_id is None else str(webhook_id)


def _today() -> date:
    return datetime.now(UTC).date()


class StatsAggregator:
    def __init__(self, conn: aiosqlite.Connection, write_lock: asyncio.Lock | None = None) -> None:
        self._conn = conn
        self._lock = write_lock or asyncio.Lock()

    async def update_stats(
        self,
        webhook_id: int | None,
        status_code: int,
        elapsed_ms: int,
        validated: bool,
        delivered: bool | None,
        day: date | None = None,
    ) -> None:
        """Count one finished request on its webhook's row and on the global row.

        Requests that never resolved to a webhook only count globally.
        ``delivered`` is None when no delivery was attempted.
        """
        day_key = (day or _today()).isoformat()
        now = datetime.now(UTC).isoformat()
        values = (
            int(200 <= status_code < 300),
            int(status_code >= 400),
            int(not validated),
            int(delivered is False),
            elapsed_ms,
            elapsed_ms,
            elapsed_ms,
            now,
            now,
        )
        scopes = [webhook_id, None] if webhook_id is not None else [None]
        async with self._lock:
            try:
                for scope_id in scopes:
                    await self._conn.execute(_UPSERT, (day_key, _scope(scope_id), scope_id, *values))
                await self._conn.commit()
                logger.debug("Updated %s stats for webhook %s", day_key, webhook_id)
            except aiosqlite.Error:
                await self._conn.rollback()
                raise

    async def get_daily(self, day: date, webhook_id: int | None) -> DailyStat | None:
        async with self._conn.execute(
            f"SELECT {_COLUMNS} FROM webhook_stats WHERE date=? AND scope=?",
            (day.isoformat(), _scope(webhook_id)),
        ) as cursor:
            row = await cursor.fetchone()
        return DailyStat(*row) if row else None

    async def get_range(self, start: date, end: date, webhook_id: int | None) -> list[DailyStat]:
        async with self._conn.execute(
            f"SELECT {_COLUMNS} FROM webhook_stats WHERE scope=? AND date>=? AND date<=? ORDER BY date",
            (_scope(webhook_id), start.isoformat(), end.isoformat()),
        ) as cursor:
            rows = await cursor.fetchall()
        return [DailyStat(*row) for row in rows]

    async def get_top_webhooks(self, start: date, end: date, limit: int = 5) -> list[dict]:
        async with self._conn.execute(
            "SELECT s.webhook_id, w.name, SUM(s.total_requests), SUM(s.successful_requests) "
            "FROM webhook_stats s LEFT JOIN webhooks w ON w.id = s.webhook_id "
            "WHERE s.scope != ? AND s.date>=? AND s.date<=? "
            "GROUP BY s.webhook_id ORDER BY SUM(s.total_requests) DESC LIMIT ?",
            (GLOBAL_SCOPE, start.isoformat(), end.isoformat(), limit),
        ) as cursor:
            rows = await cursor.fetchall()
        return [
            {
                "webhook_id": webhook_id,
                "webhook_name": name,
                "total_requests": total,
                "success_rate": successful / total * 100 if total else 0.0,
            }
            for webhook_id, name, total, successful in rows
        ]

    async def get_overview(self, days: int = 30) -> dict:
        today = _today()
        start = today - timedelta(days=days)
        daily = await self.get_range(start, today, None)
        total = sum(s.total_requests for s in daily)
        successful = sum(s.successful_requests for s in daily)
        today_stat = next((s for s in daily if s.date == today.isoformat()), None)
        return {
            "summary": {
                "total_requests": total,
                "success_rate": successful / total * 100 if total else 0.0,
                "failed_requests": sum(s.failed_requests for s in daily),
                "avg_processing_time": (
                    round(sum(s.avg_processing_ms for s in daily) / len(daily)) if daily else 0
                ),
                "today_requests": today_stat.total_requests if today_stat else 0,
            },
            "top_webhooks": await self.get_top_webhooks(start, today),
            "daily_trend": [
                {
                    "date": s.date,
                    "requests": s.total_requests,
                    "success_rate": s.success_rate,
                    "avg_processing_time": s.avg_processing_ms,
                }
                for s in daily
            ],
            "period": f"Last {days} days",
        }

    async def get_webhook_stats(self, webhook_id: int, days: int = 30) -> dict:
        today = _today()
        daily = await self.get_range(today - timedelta(days=days), today, webhook_id)
        total = sum(s.total_requests for s in daily)
        successful = sum(s.successful_requests for s in daily)
        return {
            "webhook_id": webhook_id,
            "total_requests": total,
            "success_rate": successful / total * 100 if total else 0.0,
            "avg_processing_time": sum(s.avg_processing_ms for s in daily) / len(daily) if daily else 0,
            "daily_stats": [
                {
                    "date": s.date,
                    "requests": s.total_requests,
                    "success_rate": s.success_rate,
                    "avg_processing_time": s.avg_processing_ms,
                }
                for s in daily
            ],
        }
