"""Supabase-backed check-in session repository."""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

import httpx
from postgrest.exceptions import APIError
from supabase import Client

from classroom_checkin.domain.errors import SessionAlreadyActive, TransientFailure
from classroom_checkin.domain.models import CheckinSession, Coordinates
from classroom_checkin.services.sessions import SessionRepository

_COLUMNS = "id, class_id, token, anchor_lat, anchor_lng, created_at, expires_at, is_active"
_UNIQUE_VIOLATION = "23505"


@dataclass
class SupabaseSessionRepository(SessionRepository):
    """Supabase implementation for check-in sessions.

    The ``checkin_sessions`` table carries a partial unique index on
    ``class_id where is_active`` so two instructors racing to start a session
    cannot both succeed.
    """

    client: Client

    def create_session(
        self,
        class_id: str,
        token: str,
        anchor: Coordinates,
        created_at: datetime,
        expires_at: datetime,
    ) -> CheckinSession:
        """Insert an active session row and return it."""
        try:
            response = (
                self.client.table("checkin_sessions")
                .insert(
                    {
                        "class_id": class_id,
                        "token": token,
                        "anchor_lat": anchor.lat,
                        "anchor_lng": anchor.lng,
                        "created_at": created_at.isoformat(),
                        "expires_at": expires_at.isoformat(),
                        "is_active": True,
                    }
                )
                .execute()
            )
        except APIError as exc:
            if exc.code == _UNIQUE_VIOLATION:
                raise SessionAlreadyActive(existing=None) from exc
            raise TransientFailure() from exc
        except httpx.HTTPError as exc:
            raise TransientFailure() from exc
        if not response.data:
            raise TransientFailure("Failed to create session")
        return _to_session(response.data[0])

    def get_session(self, session_id: UUID) -> CheckinSession | None:
        """Return a session by id, if present."""
        return self._select_one("id", str(session_id))

    def get_by_token(self, token: str) -> CheckinSession | None:
        """Return a session by token, if present."""
        return self._select_one("token", token)

    def list_active_sessions(self, class_id: str) -> list[CheckinSession]:
        """Return sessions flagged active for a class, newest first."""
        response = self._execute(
            self.client.table("checkin_sessions")
            .select(_COLUMNS)
            .eq("class_id", class_id)
            .eq("is_active", True)
            .order("created_at", desc=True)
        )
        return [_to_session(row) for row in response.data or []]

    def update_expiry(
        self, session_id: UUID, expected_expires_at: datetime, expires_at: datetime
    ) -> CheckinSession | None:
        """Compare-and-set the expiry of an active session."""
        response = self._execute(
            self.client.table("checkin_sessions")
            .update({"expires_at": expires_at.isoformat()})
            .eq("id", str(session_id))
            .eq("is_active", True)
            .eq("expires_at", expected_expires_at.isoformat())
        )
        if not response.data:
            return None
        return _to_session(response.data[0])

    def deactivate(self, session_id: UUID) -> CheckinSession | None:
        """Flag a session inactive."""
        response = self._execute(
            self.client.table("checkin_sessions")
            .update({"is_active": False})
            .eq("id", str(session_id))
        )
        if not response.data:
            return None
        return _to_session(response.data[0])

    def deactivate_expired(self, now: datetime, class_id: str | None = None) -> int:
        """Flag active sessions whose expiry has passed inactive."""
        query = (
            self.client.table("checkin_sessions")
            .update({"is_active": False})
            .eq("is_active", True)
            .lt("expires_at", now.isoformat())
        )
        if class_id is not None:
            query = query.eq("class_id", class_id)
        response = self._execute(query)
        return len(response.data or [])

    def _select_one(self, column: str, value: str) -> CheckinSession | None:
        response = self._execute(
            self.client.table("checkin_sessions")
            .select(_COLUMNS)
            .eq(column, value)
            .limit(1)
        )
        if not response.data:
            return None
        return _to_session(response.data[0])

    def _execute(self, query):  # type: ignore[no-untyped-def]
        try:
            return query.execute()
        except (APIError, httpx.HTTPError) as exc:
            raise TransientFailure() from exc


def _to_session(row: dict[str, object]) -> CheckinSession:
    return CheckinSession(
        id=UUID(str(row["id"])),
        class_id=str(row["class_id"]),
        token=str(row["token"]),
        anchor=Coordinates(lat=float(row["anchor_lat"]), lng=float(row["anchor_lng"])),
        created_at=datetime.fromisoformat(str(row["created_at"])),
        expires_at=datetime.fromisoformat(str(row["expires_at"])),
        is_active=bool(row["is_active"]),
    )
