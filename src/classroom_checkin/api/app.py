"""FastAPI application factory."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from uuid import UUID

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse, Response

from classroom_checkin.api.models import (
    CheckInRequest,
    ExtendSessionRequest,
    StartSessionRequest,
    attendance_descriptor,
    export_row,
    qr_payload,
    session_descriptor,
    token_descriptor,
)
from classroom_checkin.app_logging import configure_logging
from classroom_checkin.containers import AppContainer
from classroom_checkin.domain.errors import (
    CheckinError,
    ClassNotFound,
    DuplicateCheckIn,
    InvalidDuration,
    InvalidLocation,
    InvalidToken,
    NotEnrolled,
    OutOfRange,
    SessionAlreadyActive,
    SessionExpired,
    SessionNotActive,
    SessionNotFound,
    TransientFailure,
)
from classroom_checkin.services.payload import (
    encode_payload,
    render_qr_png,
    render_qr_svg,
)

_STATUS_CODES: list[tuple[type[CheckinError], int]] = [
    (InvalidToken, status.HTTP_404_NOT_FOUND),
    (SessionExpired, status.HTTP_410_GONE),
    (OutOfRange, status.HTTP_403_FORBIDDEN),
    (NotEnrolled, status.HTTP_403_FORBIDDEN),
    (DuplicateCheckIn, status.HTTP_409_CONFLICT),
    (SessionAlreadyActive, status.HTTP_409_CONFLICT),
    (SessionNotFound, status.HTTP_404_NOT_FOUND),
    (SessionNotActive, status.HTTP_409_CONFLICT),
    (ClassNotFound, status.HTTP_404_NOT_FOUND),
    (InvalidDuration, 422),
    (InvalidLocation, 422),
    (TransientFailure, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def create_app(container: AppContainer) -> FastAPI:
    """Create a FastAPI app configured with dependencies."""
    configure_logging()
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        try:
            app.state.container.session_service.expire_stale_sessions()
        except CheckinError:
            logger.exception("Failed to deactivate expired sessions")
        yield
        await app.state.container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    @app.exception_handler(CheckinError)
    async def handle_checkin_error(request: Request, exc: CheckinError) -> JSONResponse:
        body = exc.to_detail()
        if isinstance(exc, SessionAlreadyActive) and exc.existing is not None:
            body["existingSession"] = session_descriptor(exc.existing)
        status_code = _status_for(exc)
        if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
            logger.warning("Request failed transiently: %s %s", request.url.path, exc)
        return JSONResponse(status_code=status_code, content=body)

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    @app.post("/classes/{class_id}/sessions", status_code=status.HTTP_201_CREATED)
    def start_session(
        class_id: str, body: StartSessionRequest, request: Request
    ) -> dict[str, object]:
        """Start a check-in session for a class."""
        state_container: AppContainer = request.app.state.container
        duration = body.duration_minutes
        if duration is None:
            duration = state_container.settings.default_session_minutes
        session = state_container.session_service.start_session(class_id, duration)
        return {
            "session": session_descriptor(session),
            "qrPayload": qr_payload(session),
        }

    @app.get("/classes/{class_id}/sessions/active")
    def active_session(class_id: str, request: Request) -> dict[str, object]:
        """Return the session currently accepting check-ins, if any."""
        state_container: AppContainer = request.app.state.container
        session = state_container.session_service.get_active_session(class_id)
        if session is None:
            return {"session": None, "qrPayload": None}
        return {
            "session": session_descriptor(session),
            "qrPayload": qr_payload(session),
        }

    @app.post("/sessions/{session_id}/extend")
    def extend_session(
        session_id: UUID, body: ExtendSessionRequest, request: Request
    ) -> dict[str, object]:
        """Extend a session's expiry."""
        state_container: AppContainer = request.app.state.container
        session = state_container.session_service.extend_session(
            session_id, body.additional_minutes
        )
        return {"session": session_descriptor(session)}

    @app.delete("/sessions/{session_id}")
    def end_session(session_id: UUID, request: Request) -> dict[str, object]:
        """End a session. Ending an ended session succeeds."""
        state_container: AppContainer = request.app.state.container
        session = state_container.session_service.end_session(session_id)
        return {"session": session_descriptor(session)}

    @app.get("/sessions/{session_id}/qr.png")
    def session_qr_png(session_id: UUID, request: Request) -> Response:
        """Render the session QR code as PNG."""
        payload = _valid_session_payload(request, session_id)
        return Response(content=render_qr_png(payload), media_type="image/png")

    @app.get("/sessions/{session_id}/qr.svg")
    def session_qr_svg(session_id: UUID, request: Request) -> Response:
        """Render the session QR code as SVG."""
        payload = _valid_session_payload(request, session_id)
        return Response(content=render_qr_svg(payload), media_type="image/svg+xml")

    @app.get("/tokens/{token}")
    def lookup_token(token: str, request: Request) -> dict[str, object]:
        """Describe the session a token belongs to."""
        state_container: AppContainer = request.app.state.container
        session = state_container.session_service.get_session_by_token(token)
        if session is None:
            raise InvalidToken()
        now = state_container.session_service.clock()
        return {"session": token_descriptor(session, now)}

    @app.post("/check-ins", status_code=status.HTTP_201_CREATED)
    def check_in(body: CheckInRequest, request: Request) -> dict[str, object]:
        """Record a student's attendance."""
        state_container: AppContainer = request.app.state.container
        record = state_container.checkin_service.check_in(
            token=body.session_token,
            student_id=body.student_id,
            claimed_location=body.location.to_coordinates(),
        )
        return attendance_descriptor(record)

    @app.get("/sessions/{session_id}/attendance")
    def session_attendance(session_id: UUID, request: Request) -> dict[str, object]:
        """Export accepted check-ins for a session."""
        state_container: AppContainer = request.app.state.container
        state_container.session_service.get_session(session_id)
        rows = state_container.attendance_service.export_session(session_id)
        return {"attendance": [export_row(row) for row in rows]}

    @app.get("/students/{student_id}/attendance")
    def student_attendance(
        student_id: str, request: Request, limit: int = 50
    ) -> dict[str, object]:
        """Return a student's recent check-ins."""
        state_container: AppContainer = request.app.state.container
        records = state_container.attendance_service.student_history(
            student_id, limit=max(1, min(limit, 200))
        )
        return {"attendance": [attendance_descriptor(record) for record in records]}

    return app


def _valid_session_payload(request: Request, session_id: UUID) -> bytes:
    state_container: AppContainer = request.app.state.container
    session_service = state_container.session_service
    session = session_service.get_session(session_id)
    if not session.is_valid(session_service.clock()):
        raise SessionNotActive("Cannot generate a QR code for an inactive session.")
    return encode_payload(session, include_expiry=True)


def _status_for(exc: CheckinError) -> int:
    for error_type, status_code in _STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_400_BAD_REQUEST
