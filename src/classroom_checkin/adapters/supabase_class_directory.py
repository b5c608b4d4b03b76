"""Supabase-backed read access to classes and enrollments."""

from dataclasses import dataclass

import httpx
from postgrest.exceptions import APIError
from supabase import Client

from classroom_checkin.domain.errors import TransientFailure
from classroom_checkin.domain.models import ClassRecord, Coordinates
from classroom_checkin.services.sessions import ClassDirectory


@dataclass
class SupabaseClassDirectory(ClassDirectory):
    """Reads the ``classes`` and ``enrollments`` tables."""

    client: Client

    def get_class(self, class_id: str) -> ClassRecord | None:
        """Return a class by id, if present."""
        response = self._execute(
            self.client.table("classes")
            .select("id, name, location")
            .eq("id", class_id)
            .limit(1)
        )
        if not response.data:
            return None
        row = response.data[0]
        location = row.get("location") or {}
        if not isinstance(location, dict) or "lat" not in location:
            return None
        return ClassRecord(
            id=str(row["id"]),
            name=str(row.get("name") or ""),
            location=Coordinates(lat=float(location["lat"]), lng=float(location["lng"])),
        )

    def is_enrolled(self, class_id: str, student_id: str) -> bool:
        """Return whether a student holds an active enrollment in a class."""
        response = self._execute(
            self.client.table("enrollments")
            .select("student_id")
            .eq("class_id", class_id)
            .eq("student_id", student_id)
            .eq("is_active", True)
            .limit(1)
        )
        return bool(response.data)

    def _execute(self, query):  # type: ignore[no-untyped-def]
        try:
            return query.execute()
        except (APIError, httpx.HTTPError) as exc:
            raise TransientFailure() from exc
