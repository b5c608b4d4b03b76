"""Attendance record storage interface and export."""

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol
from uuid import UUID

from classroom_checkin.domain.models import AttendanceRecord, Coordinates


class AttendanceRepository(Protocol):
    """Persistence interface for attendance records."""

    def create_record(  # noqa: PLR0913
        self,
        session_id: UUID,
        class_id: str,
        student_id: str,
        location: Coordinates,
        distance_meters: float,
        marked_at: datetime,
    ) -> AttendanceRecord:
        """Insert a record atomically.

        Raises DuplicateCheckIn when the (session, student) pair exists and
        TransientFailure for any other storage problem.
        """

    def list_for_session(self, session_id: UUID) -> list[AttendanceRecord]:
        """Return all records produced by a session."""

    def list_for_student(self, student_id: str, limit: int) -> list[AttendanceRecord]:
        """Return the most recent records for a student."""


@dataclass(frozen=True)
class AttendanceExportRow:
    """One accepted check-in as handed to the reporting collaborator."""

    student_id: str
    session_id: UUID
    marked_at: datetime
    location: Coordinates


@dataclass
class AttendanceService:
    """Read-side access to accepted check-ins."""

    repository: AttendanceRepository

    def export_session(self, session_id: UUID) -> list[AttendanceExportRow]:
        """Return every accepted check-in for a session, oldest first."""
        records = sorted(
            self.repository.list_for_session(session_id),
            key=lambda record: record.marked_at,
        )
        return [_to_row(record) for record in records]

    def student_history(self, student_id: str, limit: int = 50) -> list[AttendanceRecord]:
        """Return a student's recent check-ins, newest first."""
        records = self.repository.list_for_student(student_id, limit)
        return sorted(records, key=lambda record: record.marked_at, reverse=True)


def _to_row(record: AttendanceRecord) -> AttendanceExportRow:
    return AttendanceExportRow(
        student_id=record.student_id,
        session_id=record.session_id,
        marked_at=record.marked_at,
        location=record.location,
    )
