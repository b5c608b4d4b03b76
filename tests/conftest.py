"""Shared test fixtures."""

import asyncio
import threading
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

import pytest

from classroom_checkin.config import Settings
from classroom_checkin.containers import AppContainer
from classroom_checkin.domain.errors import DuplicateCheckIn, SessionAlreadyActive
from classroom_checkin.domain.models import (
    AttendanceRecord,
    CheckinSession,
    ClassRecord,
    Coordinates,
    Position,
)
from classroom_checkin.services.attendance import AttendanceRepository, AttendanceService
from classroom_checkin.services.checkin import CheckInService
from classroom_checkin.services.location import LocationSource, PermissionState
from classroom_checkin.services.sessions import (
    ClassDirectory,
    SessionRepository,
    SessionService,
)

ANCHOR = Coordinates(lat=40.0, lng=-75.0)


@dataclass
class FakeClock:
    """Controllable clock."""

    now: datetime = field(
        default_factory=lambda: datetime(2025, 3, 3, 9, 0, tzinfo=UTC)
    )

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@dataclass
class InMemoryClassDirectory(ClassDirectory):
    """In-memory class directory for tests."""

    classes: dict[str, ClassRecord] = field(default_factory=dict)
    enrollments: set[tuple[str, str]] = field(default_factory=set)

    def add(self, class_id: str, location: Coordinates, name: str = "") -> None:
        self.classes[class_id] = ClassRecord(
            id=class_id, name=name or class_id, location=location
        )

    def get_class(self, class_id: str) -> ClassRecord | None:
        return self.classes.get(class_id)

    def enroll(self, class_id: str, student_id: str) -> None:
        self.enrollments.add((class_id, student_id))

    def is_enrolled(self, class_id: str, student_id: str) -> bool:
        return (class_id, student_id) in self.enrollments


@dataclass
class InMemorySessionRepository(SessionRepository):
    """In-memory session repository enforcing one active session per class."""

    sessions: dict[UUID, CheckinSession] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def create_session(
        self,
        class_id: str,
        token: str,
        anchor: Coordinates,
        created_at: datetime,
        expires_at: datetime,
    ) -> CheckinSession:
        with self._lock:
            for existing in self.sessions.values():
                if existing.class_id == class_id and existing.is_active:
                    raise SessionAlreadyActive(existing=existing)
            session = CheckinSession(
                id=uuid4(),
                class_id=class_id,
                token=token,
                anchor=anchor,
                created_at=created_at,
                expires_at=expires_at,
                is_active=True,
            )
            self.sessions[session.id] = session
            return session

    def get_session(self, session_id: UUID) -> CheckinSession | None:
        return self.sessions.get(session_id)

    def get_by_token(self, token: str) -> CheckinSession | None:
        for session in self.sessions.values():
            if session.token == token:
                return session
        return None

    def list_active_sessions(self, class_id: str) -> list[CheckinSession]:
        active = [
            session
            for session in self.sessions.values()
            if session.class_id == class_id and session.is_active
        ]
        return sorted(active, key=lambda session: session.created_at, reverse=True)

    def update_expiry(
        self, session_id: UUID, expected_expires_at: datetime, expires_at: datetime
    ) -> CheckinSession | None:
        with self._lock:
            session = self.sessions.get(session_id)
            if (
                session is None
                or not session.is_active
                or session.expires_at != expected_expires_at
            ):
                return None
            updated = replace(session, expires_at=expires_at)
            self.sessions[session_id] = updated
            return updated

    def deactivate(self, session_id: UUID) -> CheckinSession | None:
        with self._lock:
            session = self.sessions.get(session_id)
            if session is None:
                return None
            updated = replace(session, is_active=False)
            self.sessions[session_id] = updated
            return updated

    def deactivate_expired(self, now: datetime, class_id: str | None = None) -> int:
        with self._lock:
            count = 0
            for session_id, session in list(self.sessions.items()):
                if class_id is not None and session.class_id != class_id:
                    continue
                if session.is_active and session.is_expired(now):
                    self.sessions[session_id] = replace(session, is_active=False)
                    count += 1
            return count


@dataclass
class InMemoryAttendanceRepository(AttendanceRepository):
    """In-memory attendance repository with an atomic unique insert."""

    records: dict[tuple[UUID, str], AttendanceRecord] = field(default_factory=dict)
    failure: Exception | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def create_record(  # noqa: PLR0913
        self,
        session_id: UUID,
        class_id: str,
        student_id: str,
        location: Coordinates,
        distance_meters: float,
        marked_at: datetime,
    ) -> AttendanceRecord:
        if self.failure is not None:
            raise self.failure
        with self._lock:
            key = (session_id, student_id)
            if key in self.records:
                raise DuplicateCheckIn()
            record = AttendanceRecord(
                id=uuid4(),
                session_id=session_id,
                class_id=class_id,
                student_id=student_id,
                location=location,
                distance_meters=distance_meters,
                marked_at=marked_at,
            )
            self.records[key] = record
            return record

    def list_for_session(self, session_id: UUID) -> list[AttendanceRecord]:
        return [
            record for record in self.records.values() if record.session_id == session_id
        ]

    def list_for_student(self, student_id: str, limit: int) -> list[AttendanceRecord]:
        return [
            record for record in self.records.values() if record.student_id == student_id
        ][:limit]


@dataclass
class FakeLocationSource(LocationSource):
    """Location source returning fixes stamped with the test clock."""

    clock: FakeClock
    lat: float = 40.00005
    lng: float = -75.0
    accuracy_meters: float | None = 8.0
    permission: PermissionState = PermissionState.GRANTED
    grant_on_request: bool = True
    error: Exception | None = None
    delay_seconds: float = 0.0
    age: timedelta = timedelta(0)
    calls: int = 0

    async def permission_state(self) -> PermissionState:
        return self.permission

    async def request_permission(self) -> bool:
        if self.grant_on_request:
            self.permission = PermissionState.GRANTED
        return self.grant_on_request

    async def current_position(self, high_accuracy: bool) -> Position:
        self.calls += 1
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if self.error is not None:
            raise self.error
        return Position(
            lat=self.lat,
            lng=self.lng,
            accuracy_meters=self.accuracy_meters,
            captured_at=self.clock() - self.age,
        )


@dataclass
class FakeGateway:
    """Check-in gateway that replays scripted results."""

    results: list[object] = field(default_factory=list)
    calls: list[tuple[str, str, Coordinates]] = field(default_factory=list)
    gate: asyncio.Event | None = None

    async def submit(
        self, token: str, student_id: str, location: Coordinates
    ) -> AttendanceRecord:
        self.calls.append((token, student_id, location))
        if self.gate is not None:
            await self.gate.wait()
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


@dataclass
class FakeCamera:
    """Camera that records open/close calls."""

    is_open: bool = False
    opened: int = 0
    closed: int = 0

    def open(self) -> None:
        self.is_open = True
        self.opened += 1

    def close(self) -> None:
        self.is_open = False
        self.closed += 1


def make_record(student_id: str = "student-a") -> AttendanceRecord:
    return AttendanceRecord(
        id=uuid4(),
        session_id=uuid4(),
        class_id="cs101",
        student_id=student_id,
        location=Coordinates(lat=40.00005, lng=-75.0),
        distance_meters=5.6,
        marked_at=datetime(2025, 3, 3, 9, 5, tzinfo=UTC),
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        supabase_url="https://example.supabase.co",
        supabase_service_key="header.payload.signature",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def class_directory() -> InMemoryClassDirectory:
    directory = InMemoryClassDirectory()
    directory.add("cs101", ANCHOR, name="Intro to Computing")
    directory.enroll("cs101", "student-a")
    directory.enroll("cs101", "student-b")
    return directory


@pytest.fixture
def session_repository() -> InMemorySessionRepository:
    return InMemorySessionRepository()


@pytest.fixture
def attendance_repository() -> InMemoryAttendanceRepository:
    return InMemoryAttendanceRepository()


@pytest.fixture
def session_service(
    class_directory: InMemoryClassDirectory,
    session_repository: InMemorySessionRepository,
    clock: FakeClock,
) -> SessionService:
    return SessionService(
        class_directory=class_directory,
        repository=session_repository,
        clock=clock,
    )


@pytest.fixture
def checkin_service(
    session_repository: InMemorySessionRepository,
    attendance_repository: InMemoryAttendanceRepository,
    class_directory: InMemoryClassDirectory,
    clock: FakeClock,
) -> CheckInService:
    return CheckInService(
        session_repository=session_repository,
        attendance_repository=attendance_repository,
        class_directory=class_directory,
        max_radius_meters=50.0,
        clock=clock,
    )


@pytest.fixture
def container(
    settings: Settings,
    session_service: SessionService,
    checkin_service: CheckInService,
    attendance_repository: InMemoryAttendanceRepository,
) -> AppContainer:
    async def close_resources() -> None:
        return None

    return AppContainer(
        settings=settings,
        session_service=session_service,
        checkin_service=checkin_service,
        attendance_service=AttendanceService(attendance_repository),
        close_resources=close_resources,
    )
