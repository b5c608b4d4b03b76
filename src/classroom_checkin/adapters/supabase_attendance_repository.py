"""Supabase-backed attendance record repository."""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

import httpx
from postgrest.exceptions import APIError
from supabase import Client

from classroom_checkin.domain.errors import DuplicateCheckIn, TransientFailure
from classroom_checkin.domain.models import AttendanceRecord, Coordinates
from classroom_checkin.services.attendance import AttendanceRepository

_COLUMNS = (
    "id, session_id, class_id, student_id, student_lat, student_lng, "
    "distance_meters, marked_at"
)
_UNIQUE_VIOLATION = "23505"


@dataclass
class SupabaseAttendanceRepository(AttendanceRepository):
    """Supabase implementation for attendance records.

    Uniqueness of (session_id, student_id) is enforced by a unique constraint,
    so a plain insert is the compare-and-insert.
    """

    client: Client

    def create_record(  # noqa: PLR0913
        self,
        session_id: UUID,
        class_id: str,
        student_id: str,
        location: Coordinates,
        distance_meters: float,
        marked_at: datetime,
    ) -> AttendanceRecord:
        """Insert an attendance row and return it."""
        try:
            response = (
                self.client.table("attendance_records")
                .insert(
                    {
                        "session_id": str(session_id),
                        "class_id": class_id,
                        "student_id": student_id,
                        "student_lat": location.lat,
                        "student_lng": location.lng,
                        "distance_meters": distance_meters,
                        "marked_at": marked_at.isoformat(),
                    }
                )
                .execute()
            )
        except APIError as exc:
            if exc.code == _UNIQUE_VIOLATION:
                raise DuplicateCheckIn() from exc
            raise TransientFailure() from exc
        except httpx.HTTPError as exc:
            raise TransientFailure() from exc
        if not response.data:
            raise TransientFailure("Failed to record attendance")
        return _to_record(response.data[0])

    def list_for_session(self, session_id: UUID) -> list[AttendanceRecord]:
        """Return all records for a session, oldest first."""
        response = self._execute(
            self.client.table("attendance_records")
            .select(_COLUMNS)
            .eq("session_id", str(session_id))
            .order("marked_at")
        )
        return [_to_record(row) for row in response.data or []]

    def list_for_student(self, student_id: str, limit: int) -> list[AttendanceRecord]:
        """Return the newest records for a student."""
        response = self._execute(
            self.client.table("attendance_records")
            .select(_COLUMNS)
            .eq("student_id", student_id)
            .order("marked_at", desc=True)
            .limit(limit)
        )
        return [_to_record(row) for row in response.data or []]

    def _execute(self, query):  # type: ignore[no-untyped-def]
        try:
            return query.execute()
        except (APIError, httpx.HTTPError) as exc:
            raise TransientFailure() from exc


def _to_record(row: dict[str, object]) -> AttendanceRecord:
    return AttendanceRecord(
        id=UUID(str(row["id"])),
        session_id=UUID(str(row["session_id"])),
        class_id=str(row["class_id"]),
        student_id=str(row["student_id"]),
        location=Coordinates(
            lat=float(row["student_lat"]), lng=float(row["student_lng"])
        ),
        distance_meters=float(row["distance_meters"]),
        marked_at=datetime.fromisoformat(str(row["marked_at"])),
    )
