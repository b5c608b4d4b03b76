"""Domain models for check-in sessions and attendance."""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


@dataclass(frozen=True)
class Coordinates:
    """A latitude/longitude pair in decimal degrees."""

    lat: float
    lng: float


@dataclass(frozen=True)
class Position:
    """A device position fix."""

    lat: float
    lng: float
    accuracy_meters: float | None
    captured_at: datetime

    @property
    def coordinates(self) -> Coordinates:
        return Coordinates(lat=self.lat, lng=self.lng)


@dataclass(frozen=True)
class ClassRecord:
    """Class details read from the class-management collaborator."""

    id: str
    name: str
    location: Coordinates


@dataclass(frozen=True)
class CheckinSession:
    """A time- and location-bounded authorization to accept check-ins."""

    id: UUID
    class_id: str
    token: str
    anchor: Coordinates
    created_at: datetime
    expires_at: datetime
    is_active: bool

    def is_expired(self, now: datetime) -> bool:
        """Return whether the session expiry instant has passed."""
        return now > self.expires_at

    def is_valid(self, now: datetime) -> bool:
        """Return whether the session still accepts check-ins."""
        return self.is_active and not self.is_expired(now)


@dataclass(frozen=True)
class AttendanceRecord:
    """The result of one accepted check-in."""

    id: UUID
    session_id: UUID
    class_id: str
    student_id: str
    location: Coordinates
    distance_meters: float
    marked_at: datetime


@dataclass(frozen=True)
class CheckinPayload:
    """The scannable content of a session QR code."""

    token: str
    anchor: Coordinates
    class_id: str | None = None
    expires_at: datetime | None = None
