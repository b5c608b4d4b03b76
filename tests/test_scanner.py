"""Tests for the student scanner flow."""

import asyncio
import json

from classroom_checkin.domain.errors import (
    DuplicateCheckIn,
    LocationTimeout,
    MalformedPayload,
    OutOfRange,
    PermissionDenied,
    TransientFailure,
)
from classroom_checkin.services.location import LocationClient, PermissionState
from classroom_checkin.services.scanner import ScannerController, ScannerState
from tests.conftest import (
    FakeCamera,
    FakeGateway,
    FakeLocationSource,
    make_record,
)

PAYLOAD = json.dumps(
    {
        "sessionToken": "token-123",
        "location": {"lat": 40.0, "lng": -75.0},
        "classId": "cs101",
    }
)


def make_scanner(clock, gateway, source=None, camera=None) -> ScannerController:  # type: ignore[no-untyped-def]
    locator = LocationClient(source=source or FakeLocationSource(clock=clock), clock=clock)
    return ScannerController(
        student_id="student-a",
        locator=locator,
        gateway=gateway,
        camera=camera,
        retry_cooldown_seconds=0.01,
    )


def test_successful_check_in(clock) -> None:
    camera = FakeCamera()
    gateway = FakeGateway(results=[make_record()])
    scanner = make_scanner(clock, gateway, camera=camera)
    seen: list[ScannerState] = []
    scanner.subscribe(lambda snapshot: seen.append(snapshot.state))

    async def flow() -> None:
        assert await scanner.start() is ScannerState.AWAITING_SCAN
        assert camera.is_open
        assert await scanner.scan(PAYLOAD) is ScannerState.SUCCEEDED

    asyncio.run(flow())

    token, student_id, location = gateway.calls[0]
    assert token == "token-123"
    assert student_id == "student-a"
    assert location.lat == 40.00005
    assert scanner.record is not None
    assert scanner.estimated_distance_meters is not None
    assert not camera.is_open
    assert seen[-1] is ScannerState.SUCCEEDED
    assert ScannerState.SUBMITTING in seen


def test_permission_denied_then_granted(clock) -> None:
    source = FakeLocationSource(
        clock=clock, permission=PermissionState.DENIED, grant_on_request=False
    )
    scanner = make_scanner(clock, FakeGateway(), source=source)

    async def flow() -> None:
        state = await scanner.start()
        assert state is ScannerState.AWAITING_LOCATION_PERMISSION
        assert isinstance(scanner.failure, PermissionDenied)

        source.grant_on_request = True
        assert await scanner.request_permission() is ScannerState.AWAITING_SCAN

    asyncio.run(flow())

    assert scanner.failure is None
    assert source.calls == 1


def test_malformed_scan_stays_in_scanning(clock) -> None:
    gateway = FakeGateway()
    scanner = make_scanner(clock, gateway)

    async def flow() -> ScannerState:
        await scanner.start()
        return await scanner.scan("https://example.com/not-a-checkin")

    assert asyncio.run(flow()) is ScannerState.AWAITING_SCAN
    assert isinstance(scanner.failure, MalformedPayload)
    assert gateway.calls == []


def test_out_of_range_returns_to_scanning_after_cooldown(clock) -> None:
    gateway = FakeGateway(results=[OutOfRange(111.2, 50.0)])
    scanner = make_scanner(clock, gateway)

    async def flow() -> None:
        await scanner.start()
        assert await scanner.scan(PAYLOAD) is ScannerState.FAILED
        assert isinstance(scanner.failure, OutOfRange)
        assert not scanner.has_pending_payload
        await asyncio.sleep(0.05)

    asyncio.run(flow())

    assert scanner.state is ScannerState.AWAITING_SCAN


def test_rescan_after_out_of_range_uses_new_position(clock) -> None:
    source = FakeLocationSource(clock=clock, lat=40.0010)
    gateway = FakeGateway(results=[OutOfRange(111.2, 50.0), make_record()])
    scanner = make_scanner(clock, gateway, source=source)

    async def flow() -> None:
        await scanner.start()
        assert await scanner.scan(PAYLOAD) is ScannerState.FAILED
        assert scanner.position is None
        await asyncio.sleep(0.05)
        assert scanner.state is ScannerState.AWAITING_SCAN
        source.lat = 40.00005
        clock.advance(seconds=20)
        assert await scanner.scan(PAYLOAD) is ScannerState.SUCCEEDED

    asyncio.run(flow())

    assert [location.lat for _, _, location in gateway.calls] == [40.0010, 40.00005]
    assert source.calls == 2


def test_duplicate_is_reported_as_already_checked_in(clock) -> None:
    camera = FakeCamera()
    scanner = make_scanner(clock, FakeGateway(results=[DuplicateCheckIn()]), camera=camera)

    async def flow() -> ScannerState:
        await scanner.start()
        return await scanner.scan(PAYLOAD)

    assert asyncio.run(flow()) is ScannerState.ALREADY_CHECKED_IN
    assert camera.closed == 1


def test_transient_failure_retries_without_rescan(clock) -> None:
    gateway = FakeGateway(results=[TransientFailure(), make_record()])
    scanner = make_scanner(clock, gateway)

    async def flow() -> None:
        await scanner.start()
        assert await scanner.scan(PAYLOAD) is ScannerState.FAILED
        assert scanner.has_pending_payload
        assert await scanner.retry() is ScannerState.SUCCEEDED

    asyncio.run(flow())

    assert len(gateway.calls) == 2
    assert gateway.calls[0][0] == gateway.calls[1][0]


def test_location_timeout_then_retry(clock) -> None:
    source = FakeLocationSource(clock=clock, error=LocationTimeout())
    scanner = make_scanner(clock, FakeGateway(), source=source)

    async def flow() -> None:
        assert await scanner.start() is ScannerState.FAILED
        assert isinstance(scanner.failure, LocationTimeout)
        source.error = None
        assert await scanner.retry() is ScannerState.AWAITING_SCAN

    asyncio.run(flow())

    assert source.calls == 2


def test_stale_fix_is_refreshed_before_submit(clock) -> None:
    source = FakeLocationSource(clock=clock)
    scanner = make_scanner(clock, FakeGateway(results=[make_record()]), source=source)

    async def flow() -> None:
        await scanner.start()
        clock.advance(minutes=2)
        assert await scanner.scan(PAYLOAD) is ScannerState.SUCCEEDED

    asyncio.run(flow())

    assert source.calls == 2


def test_cancel_during_submit_discards_result(clock) -> None:
    camera = FakeCamera()
    gateway = FakeGateway(results=[make_record()])
    scanner = make_scanner(clock, gateway, camera=camera)

    async def flow() -> ScannerState:
        gateway.gate = asyncio.Event()
        await scanner.start()
        pending = asyncio.create_task(scanner.scan(PAYLOAD))
        await asyncio.sleep(0.01)
        assert scanner.state is ScannerState.SUBMITTING
        scanner.cancel()
        gateway.gate.set()
        return await pending

    assert asyncio.run(flow()) is ScannerState.CANCELLED
    assert scanner.record is None
    assert not camera.is_open


def test_cancel_during_location_acquisition(clock) -> None:
    source = FakeLocationSource(clock=clock, delay_seconds=5.0)
    scanner = make_scanner(clock, FakeGateway(), source=source)

    async def flow() -> ScannerState:
        pending = asyncio.create_task(scanner.start())
        await asyncio.sleep(0.01)
        assert scanner.state is ScannerState.ACQUIRING_LOCATION
        scanner.cancel()
        return await pending

    assert asyncio.run(flow()) is ScannerState.CANCELLED
    assert scanner.position is None


def test_restart_after_cancel(clock) -> None:
    scanner = make_scanner(clock, FakeGateway(results=[make_record()]))

    async def flow() -> ScannerState:
        await scanner.start()
        scanner.cancel()
        await scanner.start()
        return await scanner.scan(PAYLOAD)

    assert asyncio.run(flow()) is ScannerState.SUCCEEDED
