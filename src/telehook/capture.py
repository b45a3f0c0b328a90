import logging
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any

from telehook.metrics import CAPTURE_SESSIONS_ACTIVE, CAPTURE_TRANSITIONS_TOTAL

logger = logging.getLogger(__name__)


class CaptureStatus(StrEnum):
    PENDING = "Pending"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    EXPIRED = "Expired"


class SessionOperationResult(StrEnum):
    SUCCESS = "Success"
    SESSION_NOT_FOUND = "SessionNotFound"
    SESSION_EXPIRED = "SessionExpired"
    SESSION_ALREADY_COMPLETED = "SessionAlreadyCompleted"
    SESSION_CANCELLED = "SessionCancelled"


_TERMINAL_RESULTS = {
    CaptureStatus.COMPLETED: SessionOperationResult.SESSION_ALREADY_COMPLETED,
    CaptureStatus.CANCELLED: SessionOperationResult.SESSION_CANCELLED,
    CaptureStatus.EXPIRED: SessionOperationResult.SESSION_EXPIRED,
}


@dataclass
class CaptureSession:
    session_id: str
    user_id: int
    created_at: datetime
    expires_at: datetime
    status: CaptureStatus = CaptureStatus.PENDING
    captured_payload: Any = None
    finished_at: datetime | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def is_terminal(self) -> bool:
        return self.status is not CaptureStatus.PENDING

    def is_overdue(self, now: datetime) -> bool:
        return now >= self.expires_at

    def compare_and_set(
        self,
        expected: CaptureStatus,
        new: CaptureStatus,
        at: datetime,
        payload: Any = None,
    ) -> bool:
        with self._lock:
            if self.status is not expected:
                return False
            if payload is not None:
                self.captured_payload = payload
            self.status = new
            self.finished_at = at
        CAPTURE_TRANSITIONS_TOTAL.labels(status=new.value).inc()
        return True


@dataclass(frozen=True)
class SweepResult:
    expired: int
    removed: int


def _utcnow() -> datetime:
    return datetime.now(UTC)


class CaptureSessionManager:
    def __init__(
        self,
        ttl: timedelta,
        retention: timedelta,
        capture_url_format: str = "/api/payload/capture/{}",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._ttl = ttl
        self._retention = retention
        self._capture_url_format = capture_url_format
        self._clock = clock
        self._sessions: dict[str, CaptureSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def capture_url(self, session_id: str) -> str:
        return self._capture_url_format.format(session_id)

    def create_session(self, user_id: int) -> CaptureSession:
        now = self._clock()
        session = CaptureSession(
            session_id=str(uuid.uuid4()),
            user_id=user_id,
            created_at=now,
            expires_at=now + self._ttl,
        )
        self._sessions[session.session_id] = session
        CAPTURE_SESSIONS_ACTIVE.set(len(self._sessions))
        logger.info("Created capture session %s for user %s", session.session_id, user_id)
        return session

    def get_session(self, session_id: str) -> CaptureSession | None:
        session = self._sessions.get(session_id)
        if session is not None:
            self._expire_if_overdue(session, self._clock())
        return session

    def complete_session(self, session_id: str, payload: Any) -> SessionOperationResult:
        return self._transition(session_id, CaptureStatus.COMPLETED, payload)

    def cancel_session(self, session_id: str) -> SessionOperationResult:
        return self._transition(session_id, CaptureStatus.CANCELLED)

    def sweep(self, now: datetime | None = None) -> SweepResult:
        """Expire overdue pending sessions, then drop those terminal past retention."""
        now = now or self._clock()
        expired = removed = 0
        for session in list(self._sessions.values()):
            if self._expire_if_overdue(session, now):
                expired += 1
            if session.finished_at is not None and now - session.finished_at >= self._retention:
                if self._sessions.pop(session.session_id, None) is not None:
                    removed += 1
        CAPTURE_SESSIONS_ACTIVE.set(len(self._sessions))
        return SweepResult(expired=expired, removed=removed)

    def _expire_if_overdue(self, session: CaptureSession, now: datetime) -> bool:
        if session.status is CaptureStatus.PENDING and session.is_overdue(now):
            if session.compare_and_set(CaptureStatus.PENDING, CaptureStatus.EXPIRED, now):
                logger.info("Capture session %s expired", session.session_id)
                return True
        return False

    def _transition(self, session_id: str, new: CaptureStatus, payload: Any = None) -> SessionOperationResult:
        session = self._sessions.get(session_id)
        if session is None:
            logger.warning("Capture session %s not found", session_id)
            return SessionOperationResult.SESSION_NOT_FOUND

        now = self._clock()
        self._expire_if_overdue(session, now)
        if session.compare_and_set(CaptureStatus.PENDING, new, now, payload):
            logger.info("Capture session %s %s", session_id, new.value.lower())
            return SessionOperationResult.SUCCESS

        result = _TERMINAL_RESULTS[session.status]
        logger.warning("Capture session %s not %s: %s", session_id, new.value.lower(), result.value)
        return result
