"""Server-side check-in decision and attendance recording."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from classroom_checkin.domain.errors import (
    DuplicateCheckIn,
    InvalidLocation,
    InvalidToken,
    NotEnrolled,
    OutOfRange,
    SessionExpired,
)
from classroom_checkin.domain.geodesic import distance_between, is_valid_coordinates
from classroom_checkin.domain.models import AttendanceRecord, Coordinates
from classroom_checkin.services.attendance import AttendanceRepository
from classroom_checkin.services.sessions import (
    ClassDirectory,
    SessionRepository,
    utcnow,
)

_logger = logging.getLogger(__name__)

SUSPICIOUS_DISTANCE_METERS = 1000.0


@dataclass
class CheckInService:
    """Validates check-ins against their session and records attendance.

    This is the only place a check-in is accepted. Distances computed by the
    scanning device are never trusted.
    """

    session_repository: SessionRepository
    attendance_repository: AttendanceRepository
    class_directory: ClassDirectory
    max_radius_meters: float = 50.0
    clock: Callable[[], datetime] = field(default=utcnow)

    def check_in(
        self, token: str, student_id: str, claimed_location: Coordinates
    ) -> AttendanceRecord:
        """Accept a check-in or raise the protocol error explaining why not."""
        if not is_valid_coordinates(claimed_location.lat, claimed_location.lng):
            raise InvalidLocation()

        session = self.session_repository.get_by_token(token) if token else None
        if session is None:
            _logger.info("Check-in rejected: reason=invalid_token token=%s", _mask(token))
            raise InvalidToken()

        now = self.clock()
        if not session.is_active:
            _logger.info(
                "Check-in rejected: reason=session_ended session_id=%s student_id=%s",
                session.id,
                student_id,
            )
            raise SessionExpired(reason="ended")
        if session.is_expired(now):
            _logger.info(
                "Check-in rejected: reason=session_expired session_id=%s student_id=%s",
                session.id,
                student_id,
            )
            raise SessionExpired(reason="expired")

        if not self.class_directory.is_enrolled(session.class_id, student_id):
            _logger.info(
                "Check-in rejected: reason=not_enrolled session_id=%s student_id=%s",
                session.id,
                student_id,
            )
            raise NotEnrolled()

        distance_meters = distance_between(claimed_location, session.anchor)
        if distance_meters > SUSPICIOUS_DISTANCE_METERS:
            _logger.warning(
                "Possible location spoofing: session_id=%s student_id=%s distance=%.1f",
                session.id,
                student_id,
                distance_meters,
            )
        if distance_meters > self.max_radius_meters:
            _logger.info(
                "Check-in rejected: reason=out_of_range session_id=%s student_id=%s "
                "distance=%.1f limit=%.1f",
                session.id,
                student_id,
                distance_meters,
                self.max_radius_meters,
            )
            raise OutOfRange(distance_meters, self.max_radius_meters)

        try:
            record = self.attendance_repository.create_record(
                session_id=session.id,
                class_id=session.class_id,
                student_id=student_id,
                location=claimed_location,
                distance_meters=distance_meters,
                marked_at=now,
            )
        except DuplicateCheckIn:
            _logger.info(
                "Check-in rejected: reason=duplicate session_id=%s student_id=%s",
                session.id,
                student_id,
            )
            raise
        _logger.info(
            "Check-in accepted: session_id=%s student_id=%s distance=%.1f",
            session.id,
            student_id,
            distance_meters,
        )
        return record


@dataclass
class LocalCheckInGateway:
    """Submits check-ins to an in-process CheckInService."""

    service: CheckInService

    async def submit(
        self, token: str, student_id: str, location: Coordinates
    ) -> AttendanceRecord:
        """Run the check-in in a worker thread and return the record."""
        return await asyncio.to_thread(
            self.service.check_in, token, student_id, location
        )


def _mask(token: str) -> str:
    """Shorten a token for logs."""
    return f"{token[:8]}..." if token else "<empty>"
