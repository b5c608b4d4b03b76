"""HTTP client for the check-in API."""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

import httpx

from classroom_checkin.domain.errors import (
    PROTOCOL_ERRORS,
    CheckinError,
    OutOfRange,
    SessionExpired,
    TransientFailure,
)
from classroom_checkin.domain.models import AttendanceRecord, Coordinates
from classroom_checkin.services.scanner import CheckInGateway


@dataclass
class HttpxCheckInClient(CheckInGateway):
    """Check-in gateway that talks to the check-in API over HTTP."""

    base_url: str
    http_client: httpx.AsyncClient

    @classmethod
    def create(cls, base_url: str) -> "HttpxCheckInClient":
        """Create a check-in client with a managed httpx session."""
        return cls(base_url=base_url.rstrip("/"), http_client=httpx.AsyncClient())

    async def submit(
        self, token: str, student_id: str, location: Coordinates
    ) -> AttendanceRecord:
        """Submit a check-in and return the accepted record."""
        url = f"{self.base_url}/check-ins"
        try:
            response = await self.http_client.post(
                url,
                json={
                    "sessionToken": token,
                    "studentId": student_id,
                    "location": {"lat": location.lat, "lng": location.lng},
                },
                timeout=10,
            )
        except httpx.HTTPError as exc:
            raise TransientFailure() from exc
        if response.is_success:
            return _to_record(response.json())
        raise _error_from_response(response)

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()


def _error_from_response(response: httpx.Response) -> CheckinError:
    """Rebuild the typed failure the server reported."""
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    code = body.get("error")
    message = body.get("message") if isinstance(body.get("message"), str) else None

    if code == OutOfRange.code:
        return OutOfRange(
            distance_meters=float(body.get("distanceMeters", 0.0)),
            limit_meters=float(body.get("limitMeters", 0.0)),
        )
    if code == SessionExpired.code:
        return SessionExpired(message, reason=str(body.get("reason", "expired")))
    error_type = PROTOCOL_ERRORS.get(str(code))
    if error_type is not None:
        return error_type(message)
    if response.status_code >= 500:
        return TransientFailure(message)
    return CheckinError(message)


def _to_record(body: dict[str, object]) -> AttendanceRecord:
    location = body["location"]
    if not isinstance(location, dict):
        raise TransientFailure("Unexpected check-in response")
    return AttendanceRecord(
        id=UUID(str(body["id"])),
        session_id=UUID(str(body["sessionId"])),
        class_id=str(body["classId"]),
        student_id=str(body["studentId"]),
        location=Coordinates(lat=float(location["lat"]), lng=float(location["lng"])),
        distance_meters=float(body["distanceMeters"]),
        marked_at=datetime.fromisoformat(str(body["markedAt"])),
    )
