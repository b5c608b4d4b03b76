"""Request models and response serializers for the check-in API."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from classroom_checkin.domain.models import (
    AttendanceRecord,
    CheckinSession,
    Coordinates,
)
from classroom_checkin.services.attendance import AttendanceExportRow
from classroom_checkin.services.payload import build_payload, payload_to_dict


class LocationBody(BaseModel):
    """Coordinates submitted by a client."""

    lat: float
    lng: float

    def to_coordinates(self) -> Coordinates:
        return Coordinates(lat=self.lat, lng=self.lng)


class StartSessionRequest(BaseModel):
    """Body for starting a session."""

    model_config = ConfigDict(populate_by_name=True)

    duration_minutes: int | None = Field(default=None, alias="durationMinutes")


class ExtendSessionRequest(BaseModel):
    """Body for extending a session."""

    model_config = ConfigDict(populate_by_name=True)

    additional_minutes: int = Field(default=15, alias="additionalMinutes")


class CheckInRequest(BaseModel):
    """Body for a student check-in."""

    model_config = ConfigDict(populate_by_name=True)

    session_token: str = Field(alias="sessionToken")
    student_id: str = Field(alias="studentId", min_length=1)
    location: LocationBody


def session_descriptor(session: CheckinSession) -> dict[str, object]:
    """Serialize a session for the instructor-facing collaborator."""
    return {
        "id": str(session.id),
        "classId": session.class_id,
        "sessionToken": session.token,
        "location": _location(session.anchor),
        "createdAt": session.created_at.isoformat(),
        "expiresAt": session.expires_at.isoformat(),
        "isActive": session.is_active,
    }


def token_descriptor(session: CheckinSession, now: datetime) -> dict[str, object]:
    """Serialize a session looked up by token, including validity flags."""
    return {
        **session_descriptor(session),
        "isExpired": session.is_expired(now),
        "isValid": session.is_valid(now),
    }


def qr_payload(session: CheckinSession) -> dict[str, object]:
    """Return the QR payload object for a session."""
    return payload_to_dict(build_payload(session, include_expiry=True))


def attendance_descriptor(record: AttendanceRecord) -> dict[str, object]:
    """Serialize an accepted check-in."""
    return {
        "id": str(record.id),
        "sessionId": str(record.session_id),
        "classId": record.class_id,
        "studentId": record.student_id,
        "location": _location(record.location),
        "distanceMeters": round(record.distance_meters, 1),
        "markedAt": record.marked_at.isoformat(),
    }


def export_row(row: AttendanceExportRow) -> dict[str, object]:
    """Serialize an attendance export row."""
    return {
        "studentId": row.student_id,
        "sessionId": str(row.session_id),
        "markedAt": row.marked_at.isoformat(),
        "location": _location(row.location),
    }


def _location(coordinates: Coordinates) -> dict[str, float]:
    return {"lat": coordinates.lat, "lng": coordinates.lng}
