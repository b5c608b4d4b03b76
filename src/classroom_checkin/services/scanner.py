"""Student-side scanner flow: permission, location, scan, submit."""

import asyncio
import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from classroom_checkin.domain.errors import (
    CheckinError,
    DuplicateCheckIn,
    LocationError,
    MalformedPayload,
    PermissionDenied,
    TransientFailure,
)
from classroom_checkin.domain.geodesic import distance_between
from classroom_checkin.domain.models import (
    AttendanceRecord,
    CheckinPayload,
    Coordinates,
    Position,
)
from classroom_checkin.services.location import LocationClient, PermissionState
from classroom_checkin.services.payload import decode_payload

_logger = logging.getLogger(__name__)


class ScannerState(Enum):
    """States of the scanner flow."""

    IDLE = "idle"
    AWAITING_LOCATION_PERMISSION = "awaiting_location_permission"
    ACQUIRING_LOCATION = "acquiring_location"
    AWAITING_SCAN = "awaiting_scan"
    SUBMITTING = "submitting"
    SUCCEEDED = "succeeded"
    ALREADY_CHECKED_IN = "already_checked_in"
    FAILED = "failed"
    CANCELLED = "cancelled"


_TERMINAL_STATES = {
    ScannerState.SUCCEEDED,
    ScannerState.ALREADY_CHECKED_IN,
    ScannerState.CANCELLED,
}


class CheckInGateway(Protocol):
    """Submits check-ins to the check-in processor."""

    async def submit(
        self, token: str, student_id: str, location: Coordinates
    ) -> AttendanceRecord:
        """Submit a check-in and return the accepted record."""


class Camera(Protocol):
    """Camera used to read QR codes."""

    def open(self) -> None:
        """Start the camera."""

    def close(self) -> None:
        """Release the camera."""


@dataclass(frozen=True)
class ScannerSnapshot:
    """What the UI needs to render the current scanner state."""

    state: ScannerState
    failure: CheckinError | None
    record: AttendanceRecord | None
    position: Position | None
    estimated_distance_meters: float | None


@dataclass
class ScannerController:
    """Drives one student's check-in from permission prompt to result.

    Every long-running step runs in a tracked task so ``cancel`` can stop it
    from any state. Each flow is tagged with a generation number and results
    arriving for an older generation are dropped.
    """

    student_id: str
    locator: LocationClient
    gateway: CheckInGateway
    camera: Camera | None = None
    retry_cooldown_seconds: float = 2.0
    state: ScannerState = field(default=ScannerState.IDLE, init=False)
    failure: CheckinError | None = field(default=None, init=False)
    record: AttendanceRecord | None = field(default=None, init=False)
    position: Position | None = field(default=None, init=False)
    estimated_distance_meters: float | None = field(default=None, init=False)
    _pending: CheckinPayload | None = field(default=None, init=False, repr=False)
    _generation: int = field(default=0, init=False, repr=False)
    _task: asyncio.Task | None = field(default=None, init=False, repr=False)
    _cooldown: asyncio.Task | None = field(default=None, init=False, repr=False)
    _camera_open: bool = field(default=False, init=False, repr=False)
    _listeners: list[Callable[[ScannerSnapshot], None]] = field(
        default_factory=list, init=False, repr=False
    )

    def subscribe(self, listener: Callable[[ScannerSnapshot], None]) -> None:
        """Register a callback invoked after every state change."""
        self._listeners.append(listener)

    def snapshot(self) -> ScannerSnapshot:
        """Return the current view state."""
        return ScannerSnapshot(
            state=self.state,
            failure=self.failure,
            record=self.record,
            position=self.position,
            estimated_distance_meters=self.estimated_distance_meters,
        )

    @property
    def has_pending_payload(self) -> bool:
        return self._pending is not None

    async def start(self) -> ScannerState:
        """Begin a new flow: ask for permission, get a fix, open the camera."""
        if self.state not in {ScannerState.IDLE, ScannerState.CANCELLED}:
            return self.state
        self._generation += 1
        self.failure = None
        self.record = None
        self.position = None
        self.estimated_distance_meters = None
        self._pending = None
        return await self._run(self._prepare(self._generation))

    async def request_permission(self) -> ScannerState:
        """Re-enter the permission sub-flow after a denial."""
        if self.state is not ScannerState.AWAITING_LOCATION_PERMISSION:
            return self.state
        return await self._run(self._prepare(self._generation))

    async def scan(self, raw: bytes | str) -> ScannerState:
        """Handle decoded QR content and submit the check-in."""
        if self.state is not ScannerState.AWAITING_SCAN:
            return self.state
        try:
            payload = decode_payload(raw)
        except MalformedPayload as exc:
            self.failure = exc
            self._notify()
            return self.state
        self._pending = payload
        self.failure = None
        return await self._run(self._submit(self._generation))

    async def retry(self) -> ScannerState:
        """Retry after a recoverable failure without re-scanning."""
        if self.state is ScannerState.AWAITING_LOCATION_PERMISSION:
            return await self.request_permission()
        if self.state not in {ScannerState.FAILED, ScannerState.AWAITING_SCAN}:
            return self.state
        if isinstance(self.failure, LocationError):
            self.locator.invalidate()
            self.position = None
        elif self._pending is None or not isinstance(self.failure, TransientFailure):
            return self.state
        self._cancel_cooldown()
        if self._pending is None:
            return await self._run(self._prepare(self._generation))
        return await self._run(self._submit(self._generation))

    def cancel(self) -> None:
        """Stop everything, release the camera and location, discard results."""
        self._generation += 1
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._cancel_cooldown()
        self._pending = None
        self._release()
        self._transition(ScannerState.CANCELLED)

    async def _prepare(self, generation: int) -> None:
        self._transition(ScannerState.AWAITING_LOCATION_PERMISSION)
        permission = await self.locator.check_permission()
        if not self._is_current(generation):
            return
        if permission is not PermissionState.GRANTED:
            granted = await self.locator.request_permission()
            if not self._is_current(generation):
                return
            if not granted:
                self.failure = PermissionDenied()
                self._notify()
                return
        if not await self._acquire(generation):
            return
        if self._pending is not None:
            await self._submit(generation)
            return
        self._open_camera()
        self.failure = None
        self._transition(ScannerState.AWAITING_SCAN)

    async def _acquire(self, generation: int) -> bool:
        self._transition(ScannerState.ACQUIRING_LOCATION)
        try:
            position = await self.locator.acquire()
        except PermissionDenied as exc:
            if self._is_current(generation):
                self.failure = exc
                self._transition(ScannerState.AWAITING_LOCATION_PERMISSION)
            return False
        except LocationError as exc:
            if self._is_current(generation):
                self.failure = exc
                self._transition(ScannerState.FAILED)
            return False
        if not self._is_current(generation):
            return False
        self.position = position
        return True

    async def _submit(self, generation: int) -> None:
        payload = self._pending
        if payload is None:
            return
        if self.position is None or not self.locator.is_fresh(self.position):
            if not await self._acquire(generation):
                return
        position = self.position
        if position is None:
            return
        self.estimated_distance_meters = distance_between(
            position.coordinates, payload.anchor
        )
        self._transition(ScannerState.SUBMITTING)
        try:
            record = await self.gateway.submit(
                payload.token, self.student_id, position.coordinates
            )
        except DuplicateCheckIn as exc:
            if not self._is_current(generation):
                return
            self.failure = exc
            self._pending = None
            self._release()
            self._transition(ScannerState.ALREADY_CHECKED_IN)
            return
        except CheckinError as exc:
            if not self._is_current(generation):
                _logger.debug("Discarding late check-in failure: %s", exc.code)
                return
            self.failure = exc
            if not isinstance(exc, TransientFailure | LocationError):
                # Rescans take a new fix.
                self._pending = None
                self.position = None
                self.locator.invalidate()
            self._transition(ScannerState.FAILED)
            self._schedule_cooldown(generation)
            return
        if not self._is_current(generation):
            _logger.debug("Discarding late check-in result for %s", self.student_id)
            return
        self.record = record
        self.failure = None
        self._pending = None
        self._release()
        self._transition(ScannerState.SUCCEEDED)

    async def _run(self, flow: Coroutine[Any, Any, None]) -> ScannerState:
        task = asyncio.ensure_future(flow)
        self._task = task
        try:
            await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                task.cancel()
                raise
        finally:
            if self._task is task:
                self._task = None
        return self.state

    def _schedule_cooldown(self, generation: int) -> None:
        async def return_to_scan() -> None:
            await asyncio.sleep(self.retry_cooldown_seconds)
            if self._is_current(generation) and self.state is ScannerState.FAILED:
                self._transition(ScannerState.AWAITING_SCAN)

        self._cancel_cooldown()
        self._cooldown = asyncio.ensure_future(return_to_scan())

    def _cancel_cooldown(self) -> None:
        if self._cooldown is not None and not self._cooldown.done():
            self._cooldown.cancel()
        self._cooldown = None

    def _open_camera(self) -> None:
        if self.camera is not None and not self._camera_open:
            self.camera.open()
            self._camera_open = True

    def _release(self) -> None:
        if self.camera is not None and self._camera_open:
            self.camera.close()
            self._camera_open = False
        self.locator.invalidate()

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation and self.state not in _TERMINAL_STATES

    def _transition(self, state: ScannerState) -> None:
        self.state = state
        self._notify()

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            listener(snapshot)
