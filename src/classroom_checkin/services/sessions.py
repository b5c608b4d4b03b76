"""Lifecycle of check-in sessions: start, extend, end, expire."""

import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Protocol
from uuid import UUID

from classroom_checkin.domain.errors import (
    ClassNotFound,
    InvalidDuration,
    SessionAlreadyActive,
    SessionNotActive,
    SessionNotFound,
    TransientFailure,
)
from classroom_checkin.domain.models import CheckinSession, ClassRecord, Coordinates

_logger = logging.getLogger(__name__)

TOKEN_BYTES = 32


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(tz=UTC)


class ClassDirectory(Protocol):
    """Read access to classes owned by the class-management collaborator."""

    def get_class(self, class_id: str) -> ClassRecord | None:
        """Return a class by id, if present."""

    def is_enrolled(self, class_id: str, student_id: str) -> bool:
        """Return whether a student is actively enrolled in a class."""


class SessionRepository(Protocol):
    """Persistence interface for check-in sessions."""

    def create_session(
        self,
        class_id: str,
        token: str,
        anchor: Coordinates,
        created_at: datetime,
        expires_at: datetime,
    ) -> CheckinSession:
        """Insert an active session; raise SessionAlreadyActive on conflict."""

    def get_session(self, session_id: UUID) -> CheckinSession | None:
        """Return a session by id, if present."""

    def get_by_token(self, token: str) -> CheckinSession | None:
        """Return a session by token, if present."""

    def list_active_sessions(self, class_id: str) -> list[CheckinSession]:
        """Return sessions flagged active for a class, expired or not."""

    def update_expiry(
        self, session_id: UUID, expected_expires_at: datetime, expires_at: datetime
    ) -> CheckinSession | None:
        """Set a new expiry if the row is active and unchanged since read."""

    def deactivate(self, session_id: UUID) -> CheckinSession | None:
        """Flag a session inactive and return it."""

    def deactivate_expired(self, now: datetime, class_id: str | None = None) -> int:
        """Flag active sessions past their expiry inactive and return the count."""


@dataclass
class SessionService:
    """Owns the lifecycle of check-in sessions for classes."""

    class_directory: ClassDirectory
    repository: SessionRepository
    min_session_minutes: int = 1
    max_session_minutes: int = 480
    max_extension_minutes: int = 60
    extend_attempts: int = 3
    clock: Callable[[], datetime] = field(default=utcnow)

    def start_session(self, class_id: str, duration_minutes: int) -> CheckinSession:
        """Start a session for a class, snapshotting its current location."""
        if not _in_range(
            duration_minutes, self.min_session_minutes, self.max_session_minutes
        ):
            raise InvalidDuration(
                f"Duration must be between {self.min_session_minutes} and "
                f"{self.max_session_minutes} minutes."
            )
        class_record = self.class_directory.get_class(class_id)
        if class_record is None:
            raise ClassNotFound()

        now = self.clock()
        for existing in self.repository.list_active_sessions(class_id):
            if existing.is_valid(now):
                raise SessionAlreadyActive(existing=existing)
        self.repository.deactivate_expired(now, class_id=class_id)

        session = self.repository.create_session(
            class_id=class_id,
            token=secrets.token_hex(TOKEN_BYTES),
            anchor=class_record.location,
            created_at=now,
            expires_at=now + timedelta(minutes=duration_minutes),
        )
        _logger.info(
            "Session started: class_id=%s session_id=%s duration=%s",
            class_id,
            session.id,
            duration_minutes,
        )
        return session

    def extend_session(
        self, session_id: UUID, additional_minutes: int
    ) -> CheckinSession:
        """Push the expiry of a valid session back by ``additional_minutes``."""
        if not _in_range(additional_minutes, 1, self.max_extension_minutes):
            raise InvalidDuration(
                f"Additional minutes must be between 1 and "
                f"{self.max_extension_minutes}."
            )
        for _ in range(self.extend_attempts):
            session = self.repository.get_session(session_id)
            if session is None:
                raise SessionNotFound()
            if not session.is_valid(self.clock()):
                raise SessionNotActive("Cannot extend an ended or expired session.")
            updated = self.repository.update_expiry(
                session_id,
                expected_expires_at=session.expires_at,
                expires_at=session.expires_at + timedelta(minutes=additional_minutes),
            )
            if updated is not None:
                _logger.info(
                    "Session extended: session_id=%s expires_at=%s",
                    session_id,
                    updated.expires_at.isoformat(),
                )
                return updated
            _logger.info("Session changed during extend, retrying: %s", session_id)
        raise TransientFailure("The session changed concurrently. Please retry.")

    def end_session(self, session_id: UUID) -> CheckinSession:
        """End a session immediately. Ending an ended session is a no-op."""
        session = self.repository.get_session(session_id)
        if session is None:
            raise SessionNotFound()
        if not session.is_active:
            return session
        ended = self.repository.deactivate(session_id)
        _logger.info("Session ended: session_id=%s", session_id)
        return ended or session

    def get_active_session(self, class_id: str) -> CheckinSession | None:
        """Return the session currently accepting check-ins for a class."""
        now = self.clock()
        for session in self.repository.list_active_sessions(class_id):
            if session.is_valid(now):
                return session
        return None

    def get_session(self, session_id: UUID) -> CheckinSession:
        """Return a session by id or raise SessionNotFound."""
        session = self.repository.get_session(session_id)
        if session is None:
            raise SessionNotFound()
        return session

    def get_session_by_token(self, token: str) -> CheckinSession | None:
        """Return the session a token belongs to, valid or not."""
        return self.repository.get_by_token(token)

    def expire_stale_sessions(self) -> int:
        """Flag sessions whose expiry has passed as inactive."""
        count = self.repository.deactivate_expired(self.clock())
        if count:
            _logger.info("Deactivated %s expired sessions", count)
        return count


def _in_range(value: object, low: int, high: int) -> bool:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return False
    return low <= value <= high
