"""Network geolocation API client used as a location source."""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

import httpx

from classroom_checkin.domain.errors import (
    LocationTimeout,
    PermissionDenied,
    PositionUnavailable,
)
from classroom_checkin.domain.models import Position
from classroom_checkin.services.location import LocationSource, PermissionState
from classroom_checkin.services.sessions import utcnow


@dataclass
class HttpxGeolocationSource(LocationSource):
    """Location source backed by a ``POST /v1/geolocate`` style API.

    Works with the Google Geolocation API and compatible services. Without
    Wi-Fi or cell data the service falls back to IP geolocation, so
    ``high_accuracy`` cannot be honoured and is ignored.
    """

    api_key: str | None
    base_url: str
    http_client: httpx.AsyncClient
    clock: Callable[[], datetime] = field(default=utcnow)
    _denied: bool = field(default=False, init=False, repr=False)

    @classmethod
    def create(cls, api_key: str | None, base_url: str) -> "HttpxGeolocationSource":
        """Create a geolocation source with a managed httpx session."""
        return cls(api_key=api_key, base_url=base_url, http_client=httpx.AsyncClient())

    async def permission_state(self) -> PermissionState:
        """Report denied when no key is configured or the key was rejected."""
        if not self.api_key or self._denied:
            return PermissionState.DENIED
        return PermissionState.GRANTED

    async def request_permission(self) -> bool:
        """Permission cannot be granted interactively; report the current state."""
        return await self.permission_state() is PermissionState.GRANTED

    async def current_position(self, high_accuracy: bool) -> Position:
        """Ask the geolocation service for the current position."""
        url = f"{self.base_url}/v1/geolocate"
        try:
            response = await self.http_client.post(
                url,
                params={"key": self.api_key},
                json={"considerIp": True},
                timeout=15,
            )
        except httpx.TimeoutException as exc:
            raise LocationTimeout() from exc
        except httpx.HTTPError as exc:
            raise PositionUnavailable() from exc

        if response.status_code in {401, 403}:
            self._denied = True
            raise PermissionDenied()
        if response.status_code >= 400:
            raise PositionUnavailable()

        payload = response.json()
        location = payload.get("location") or {}
        try:
            lat = float(location["lat"])
            lng = float(location["lng"])
        except (KeyError, TypeError, ValueError) as exc:
            raise PositionUnavailable() from exc
        accuracy = payload.get("accuracy")
        return Position(
            lat=lat,
            lng=lng,
            accuracy_meters=float(accuracy) if accuracy is not None else None,
            captured_at=self.clock(),
        )

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()
