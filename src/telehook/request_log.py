import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit

import aiosqlite

from telehook.errors import FailureKind
from telehook.stats import StatsAggregator
from telehook.telegram import DeliveryOutcome

logger = logging.getLogger(__name__)

_SENSITIVE_HEADERS = {"authorization", "cookie", "x-api-key", "x-auth-token"}
_SENSITIVE_PARAMS = {"secret_key", "api_key", "token", "key", "password"}


def _now() -> str:
    return datetime.now(UTC).isoformat()


@dataclass
class RequestMetadata:
    method: str = "POST"
    url: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    body: str = ""
    remote_ip: str | None = None

    @property
    def secret_key(self) -> str | None:
        query = dict(parse_qsl(urlsplit(self.url).query))
        if query.get("secret_key"):
            return query["secret_key"]
        auth = next((v for k, v in self.headers.items() if k.lower() == "authorization"), "")
        return auth.removeprefix("Bearer ").strip() or None


@dataclass
class StageEvent:
    stage: str
    outcome: str
    detail: str | None
    at: str


@dataclass
class RequestTrace:
    request_id: str
    http_method: str
    request_url: str
    request_headers: dict[str, str]
    request_body: str
    created_at: str
    started: float
    webhook_id: int | None = None
    stages: list[StageEvent] = field(default_factory=list)
    payload_validated: bool = True
    validation_errors: list[str] | None = None
    message_formatted: str | None = None
    delivered: bool | None = None
    delivery_response: str | None = None
    status_code: int = 0
    response_body: str | None = None
    processing_time_ms: int = 0
    failure_kind: FailureKind | None = None
    finalized: bool = False

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)


def sanitize_headers(headers: dict[str, str]) -> dict[str, str]:
    return {k: v for k, v in headers.items() if k.lower() not in _SENSITIVE_HEADERS}


def sanitize_url(url: str) -> str:
    parts = urlsplit(url)
    if not parts.query:
        return url
    query = [(k, "[REDACTED]" if k.lower() in _SENSITIVE_PARAMS else v) for k, v in parse_qsl(parts.query)]
    return parts._replace(query=urlencode(query, safe="[]")).geturl()


class SQLiteRequestLogStore:
    """Request log rows. ``write_lock`` must be the one the stats aggregator holds
    on the same connection.
    """

    def __init__(self, conn: aiosqlite.Connection, write_lock: asyncio.Lock | None = None) -> None:
        self._conn = conn
        self._lock = write_lock or asyncio.Lock()

    async def _write(self, sql: str, params: tuple) -> aiosqlite.Cursor:
        async with self._lock:
            try:
                cursor = await self._conn.execute(sql, params)
                await self._conn.commit()
            except aiosqlite.Error:
                await self._conn.rollback()
                raise
        return cursor

    async def append(self, trace: RequestTrace) -> None:
        await self._write(
            "INSERT INTO webhook_logs(request_id,webhook_id,http_method,request_url,request_headers,"
            "request_body,response_status_code,response_body,processing_time_ms,payload_validated,"
            "validation_errors,message_formatted,delivered,delivery_response,failure_kind,stages,created_at) "
            "VALUES(?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)",
            (
                trace.request_id,
                trace.webhook_id,
                trace.http_method,
                trace.request_url,
                json.dumps(trace.request_headers),
                trace.request_body,
                trace.status_code,
                trace.response_body,
                trace.processing_time_ms,
                int(trace.payload_validated),
                json.dumps(trace.validation_errors) if trace.validation_errors else None,
                trace.message_formatted,
                int(bool(trace.delivered)),
                trace.delivery_response,
                trace.failure_kind.value if trace.failure_kind else None,
                json.dumps([event.__dict__ for event in trace.stages]),
                trace.created_at,
            ),
        )

    async def get_by_request_id(self, request_id: str) -> dict[str, Any] | None:
        async with self._conn.execute("SELECT * FROM webhook_logs WHERE request_id=?", (request_id,)) as cursor:
            row = await cursor.fetchone()
            columns = [c[0] for c in cursor.description]
        if row is None:
            return None
        record = dict(zip(columns, row, strict=True))
        record["stages"] = json.loads(record["stages"])
        return record

    async def count(self) -> int:
        async with self._conn.execute("SELECT COUNT(*) FROM webhook_logs") as cursor:
            row = await cursor.fetchone()
        return row[0]

    async def delete_older_than(self, before: str) -> int:
        cursor = await self._write("DELETE FROM webhook_logs WHERE created_at < ?", (before,))
        return cursor.rowcount


class RequestLogger:
    """Owns a request's trace from pipeline entry until it is finalized."""

    def __init__(self, store: SQLiteRequestLogStore, stats: StatsAggregator, persist: bool = True) -> None:
        self._store = store
        self._stats = stats
        self._persist = persist

    def start_request(self, metadata: RequestMetadata) -> RequestTrace:
        trace = RequestTrace(
            request_id=str(uuid.uuid4()),
            http_method=metadata.method,
            request_url=sanitize_url(metadata.url),
            request_headers=sanitize_headers(metadata.headers),
            request_body=metadata.body,
            created_at=_now(),
            started=time.monotonic(),
        )
        logger.debug("Started request %s", trace.request_id)
        return trace

    def record_stage(self, trace: RequestTrace, stage: str, outcome: str, detail: str | None = None) -> None:
        trace.stages.append(StageEvent(stage=stage, outcome=outcome, detail=detail, at=_now()))
        logger.debug("Request %s stage=%s outcome=%s", trace.request_id, stage, outcome)

    def log_validation(self, trace: RequestTrace, violations: list[str]) -> None:
        trace.payload_validated = not violations
        trace.validation_errors = violations or None
        self.record_stage(trace, "validate", "ok" if not violations else "invalid", "; ".join(violations) or None)

    def log_message_formatting(self, trace: RequestTrace, text: str) -> None:
        trace.message_formatted = text
        self.record_stage(trace, "format", "ok")

    def log_delivery(self, trace: RequestTrace, outcome: DeliveryOutcome) -> None:
        trace.delivered = outcome.success
        trace.delivery_response = outcome.response_text or outcome.error
        self.record_stage(
            trace,
            "deliver",
            "ok" if outcome.success else str(outcome.error_kind),
            f"status={outcome.status_code}",
        )

    async def complete_request(
        self,
        trace: RequestTrace,
        status_code: int,
        response_body: Any,
        failure_kind: FailureKind | None = None,
    ) -> None:
        """Finalize the trace, persist it and count it in the daily stats.

        Persistence and stats failures are logged but do not change the
        response already decided for the caller.
        """
        if trace.finalized:
            return
        trace.finalized = True
        trace.status_code = status_code
        trace.response_body = json.dumps(response_body, default=str)
        trace.processing_time_ms = trace.elapsed_ms()
        trace.failure_kind = failure_kind
        self.record_stage(trace, "complete", str(failure_kind) if failure_kind else "ok", f"status={status_code}")

        if self._persist:
            try:
                await self._store.append(trace)
            except aiosqlite.Error:
                logger.exception("Failed to persist request log %s", trace.request_id)
        try:
            await self._stats.update_stats(
                trace.webhook_id,
                status_code,
                trace.processing_time_ms,
                trace.payload_validated,
                trace.delivered,
            )
        except aiosqlite.Error:
            logger.exception("Failed to update stats for request %s", trace.request_id)

        logger.info(
            "Completed request %s: %s in %dms",
            trace.request_id,
            status_code,
            trace.processing_time_ms,
        )
