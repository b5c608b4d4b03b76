"""Single-shot device location acquisition."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Protocol

from classroom_checkin.domain.errors import (
    LocationTimeout,
    LocationUnsupported,
    PositionUnavailable,
)
from classroom_checkin.domain.geodesic import is_valid_coordinates
from classroom_checkin.domain.models import Position
from classroom_checkin.services.sessions import utcnow

_logger = logging.getLogger(__name__)


class PermissionState(Enum):
    """Whether the device may read its location."""

    GRANTED = "granted"
    DENIED = "denied"
    PROMPT = "prompt"


@dataclass(frozen=True)
class AcquireOptions:
    """Parameters for a single position request."""

    high_accuracy: bool = True
    timeout_seconds: float = 10.0
    max_staleness_seconds: float = 60.0


class LocationSource(Protocol):
    """Device or network backend that produces position fixes."""

    async def permission_state(self) -> PermissionState:
        """Return the current permission state."""

    async def request_permission(self) -> bool:
        """Ask for permission and return whether it was granted."""

    async def current_position(self, high_accuracy: bool) -> Position:
        """Return a position fix or raise a LocationError."""


@dataclass
class LocationClient:
    """Wraps a location source with timeout, staleness and error mapping."""

    source: LocationSource | None
    default_options: AcquireOptions = field(default_factory=AcquireOptions)
    clock: Callable[[], datetime] = field(default=utcnow)
    _cached: Position | None = field(default=None, init=False, repr=False)

    async def check_permission(self) -> PermissionState:
        """Return the permission state without prompting."""
        if self.source is None:
            return PermissionState.DENIED
        return await self.source.permission_state()

    async def request_permission(self) -> bool:
        """Prompt for location permission."""
        if self.source is None:
            return False
        return await self.source.request_permission()

    async def acquire(self, options: AcquireOptions | None = None) -> Position:
        """Return a position no older than ``max_staleness_seconds``."""
        if self.source is None:
            raise LocationUnsupported()
        resolved = options or self.default_options
        max_age = timedelta(seconds=resolved.max_staleness_seconds)

        if self._cached is not None and self.is_fresh(self._cached, resolved):
            return self._cached
        self._cached = None

        try:
            async with asyncio.timeout(resolved.timeout_seconds):
                position = await self.source.current_position(resolved.high_accuracy)
        except TimeoutError as exc:
            _logger.info("Location request timed out after %ss", resolved.timeout_seconds)
            raise LocationTimeout() from exc

        if not is_valid_coordinates(position.lat, position.lng):
            raise PositionUnavailable("The device reported an invalid position.")
        if self.clock() - position.captured_at > max_age:
            _logger.info("Discarding stale fix from %s", position.captured_at.isoformat())
            raise PositionUnavailable("Only an outdated location is available.")
        self._cached = position
        return position

    def is_fresh(self, position: Position, options: AcquireOptions | None = None) -> bool:
        """Return whether a fix is young enough to be used."""
        resolved = options or self.default_options
        age = self.clock() - position.captured_at
        return age <= timedelta(seconds=resolved.max_staleness_seconds)

    def invalidate(self) -> None:
        """Forget the cached fix."""
        self._cached = None

