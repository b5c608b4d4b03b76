"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from supabase import create_client

from classroom_checkin.adapters.checkin_api_client import HttpxCheckInClient
from classroom_checkin.adapters.geolocation_client import HttpxGeolocationSource
from classroom_checkin.adapters.supabase_attendance_repository import (
    SupabaseAttendanceRepository,
)
from classroom_checkin.adapters.supabase_class_directory import SupabaseClassDirectory
from classroom_checkin.adapters.supabase_session_repository import (
    SupabaseSessionRepository,
)
from classroom_checkin.config import Settings
from classroom_checkin.services.attendance import AttendanceService
from classroom_checkin.services.checkin import CheckInService
from classroom_checkin.services.location import AcquireOptions, LocationClient
from classroom_checkin.services.scanner import Camera, ScannerController
from classroom_checkin.services.sessions import SessionService


@dataclass
class AppContainer:
    """Holds server-side dependencies."""

    settings: Settings
    session_service: SessionService
    checkin_service: CheckInService
    attendance_service: AttendanceService
    close_resources: Callable[[], Awaitable[None]]


@dataclass
class ScannerContainer:
    """Holds device-side dependencies for one student."""

    settings: Settings
    location_client: LocationClient
    scanner: ScannerController
    close_resources: Callable[[], Awaitable[None]]


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default server dependency container."""
    resolved_settings = settings or Settings()
    supabase_client = create_client(
        resolved_settings.supabase_url, resolved_settings.supabase_service_key
    )
    session_repository = SupabaseSessionRepository(supabase_client)
    attendance_repository = SupabaseAttendanceRepository(supabase_client)
    class_directory = SupabaseClassDirectory(supabase_client)
    session_service = SessionService(
        class_directory=class_directory,
        repository=session_repository,
        min_session_minutes=resolved_settings.min_session_minutes,
        max_session_minutes=resolved_settings.max_session_minutes,
        max_extension_minutes=resolved_settings.max_extension_minutes,
    )
    checkin_service = CheckInService(
        session_repository=session_repository,
        attendance_repository=attendance_repository,
        class_directory=class_directory,
        max_radius_meters=resolved_settings.max_radius_meters,
    )
    attendance_service = AttendanceService(attendance_repository)

    async def close_resources() -> None:
        return None

    return AppContainer(
        settings=resolved_settings,
        session_service=session_service,
        checkin_service=checkin_service,
        attendance_service=attendance_service,
        close_resources=close_resources,
    )


def build_scanner(
    student_id: str,
    settings: Settings | None = None,
    camera: Camera | None = None,
) -> ScannerContainer:
    """Create the device-side scanner for a student."""
    resolved_settings = settings or Settings()
    geolocation_source = HttpxGeolocationSource.create(
        api_key=resolved_settings.geolocation_api_key,
        base_url=resolved_settings.geolocation_api_url,
    )
    checkin_client = HttpxCheckInClient.create(resolved_settings.checkin_api_url)
    location_client = LocationClient(
        source=geolocation_source,
        default_options=AcquireOptions(
            timeout_seconds=resolved_settings.location_timeout_seconds,
            max_staleness_seconds=resolved_settings.location_max_staleness_seconds,
        ),
    )
    scanner = ScannerController(
        student_id=student_id,
        locator=location_client,
        gateway=checkin_client,
        camera=camera,
        retry_cooldown_seconds=resolved_settings.retry_cooldown_seconds,
    )

    async def close_resources() -> None:
        scanner.cancel()
        await geolocation_source.close()
        await checkin_client.close()

    return ScannerContainer(
        settings=resolved_settings,
        location_client=location_client,
        scanner=scanner,
        close_resources=close_resources,
    )
