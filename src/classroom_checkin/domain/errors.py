"""Typed failures for the check-in protocol.

Client-local errors happen on the scanning device and can be retried in place.
Protocol errors are decisions made by the server and are shown to the student
as-is. ``TransientFailure`` covers storage and transport problems and is the
only kind worth retrying without a change of input.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from classroom_checkin.domain.models import CheckinSession


class CheckinError(Exception):
    """Base class for check-in failures."""

    code = "checkin_error"
    default_message = "Check-in failed."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def to_detail(self) -> dict[str, object]:
        """Return a JSON-serializable description of the failure."""
        return {"error": self.code, "message": self.message}


class ClientLocalError(CheckinError):
    """Failure raised on the scanning device."""


class ProtocolError(CheckinError):
    """Failure decided by the check-in protocol."""


class TransientFailure(CheckinError):
    """Storage or transport failure that may succeed on retry."""

    code = "transient_failure"
    default_message = "The service is temporarily unavailable. Please try again."


class LocationError(ClientLocalError):
    """Failure acquiring a position fix."""


class PermissionDenied(LocationError):
    code = "permission_denied"
    default_message = (
        "Location access denied. Please enable location permissions to mark "
        "attendance."
    )


class PositionUnavailable(LocationError):
    code = "position_unavailable"
    default_message = "Location information is unavailable. Please try again."


class LocationTimeout(LocationError):
    code = "location_timeout"
    default_message = "Location request timed out. Please try again."


class LocationUnsupported(LocationError):
    code = "location_unsupported"
    default_message = "Location is not supported on this device."


class MalformedPayload(ClientLocalError):
    code = "malformed_payload"
    default_message = "Invalid QR code. Please scan a valid attendance QR code."


class InvalidToken(ProtocolError):
    code = "invalid_token"
    default_message = "Invalid QR code. Please scan a valid attendance QR code."


class SessionExpired(ProtocolError):
    """The session was ended or its expiry instant has passed."""

    code = "session_expired"
    default_message = "This QR code has expired. Please ask your teacher for a new one."

    def __init__(self, message: str | None = None, reason: str = "expired") -> None:
        if message is None and reason == "ended":
            message = "This attendance session has been ended by the teacher."
        super().__init__(message)
        self.reason = reason

    def to_detail(self) -> dict[str, object]:
        return {**super().to_detail(), "reason": self.reason}


class SessionAlreadyActive(ProtocolError):
    code = "session_already_active"
    default_message = "An active attendance session already exists for this class."

    def __init__(
        self, message: str | None = None, existing: CheckinSession | None = None
    ) -> None:
        super().__init__(message)
        self.existing = existing


class SessionNotFound(ProtocolError):
    code = "session_not_found"
    default_message = "Attendance session not found."


class SessionNotActive(ProtocolError):
    code = "session_not_active"
    default_message = "Attendance session is no longer active."


class ClassNotFound(ProtocolError):
    code = "class_not_found"
    default_message = "Class not found."


class InvalidDuration(ProtocolError):
    code = "invalid_duration"
    default_message = "Duration is outside the allowed range."


class InvalidLocation(ProtocolError):
    code = "invalid_location"
    default_message = (
        "Invalid location coordinates. Latitude must be within [-90, 90] and "
        "longitude within [-180, 180]."
    )


class OutOfRange(ProtocolError):
    """The claimed location is farther from the anchor than allowed."""

    code = "out_of_range"

    def __init__(self, distance_meters: float, limit_meters: float) -> None:
        super().__init__(
            f"You are {round(distance_meters)}m away from the classroom. "
            f"You must be within {round(limit_meters)}m to mark attendance."
        )
        self.distance_meters = distance_meters
        self.limit_meters = limit_meters

    def to_detail(self) -> dict[str, object]:
        return {
            **super().to_detail(),
            "distanceMeters": round(self.distance_meters, 1),
            "limitMeters": self.limit_meters,
        }


class NotEnrolled(ProtocolError):
    code = "not_enrolled"
    default_message = "You are not enrolled in this class."


class DuplicateCheckIn(ProtocolError):
    code = "duplicate_check_in"
    default_message = "You have already marked attendance for this session."


PROTOCOL_ERRORS: dict[str, type[CheckinError]] = {
    error.code: error
    for error in (
        InvalidToken,
        SessionExpired,
        SessionAlreadyActive,
        SessionNotFound,
        SessionNotActive,
        ClassNotFound,
        InvalidDuration,
        InvalidLocation,
        NotEnrolled,
        DuplicateCheckIn,
        TransientFailure,
    )
}
