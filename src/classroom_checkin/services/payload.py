"""QR payload encoding, decoding and rendering."""

import io
import json
from datetime import datetime

import qrcode
from qrcode.image.svg import SvgPathImage

from classroom_checkin.domain.errors import MalformedPayload
from classroom_checkin.domain.geodesic import is_valid_coordinates
from classroom_checkin.domain.models import CheckinPayload, CheckinSession, Coordinates


def build_payload(session: CheckinSession, include_expiry: bool = False) -> CheckinPayload:
    """Build the scannable payload for a session."""
    return CheckinPayload(
        token=session.token,
        anchor=session.anchor,
        class_id=session.class_id,
        expires_at=session.expires_at if include_expiry else None,
    )


def payload_to_dict(payload: CheckinPayload) -> dict[str, object]:
    """Return the wire representation of a payload."""
    data: dict[str, object] = {
        "sessionToken": payload.token,
        "location": {"lat": payload.anchor.lat, "lng": payload.anchor.lng},
    }
    if payload.class_id is not None:
        data["classId"] = payload.class_id
    if payload.expires_at is not None:
        data["expiresAt"] = payload.expires_at.isoformat()
    return data


def encode_payload(session: CheckinSession, include_expiry: bool = False) -> bytes:
    """Serialize a session into the UTF-8 JSON carried by the QR code."""
    data = payload_to_dict(build_payload(session, include_expiry=include_expiry))
    return json.dumps(data, separators=(",", ":")).encode("utf-8")


def decode_payload(data: bytes | str) -> CheckinPayload:
    """Parse scanned QR content into a payload or raise MalformedPayload."""
    try:
        text = data.decode("utf-8") if isinstance(data, bytes) else data
        raw = json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedPayload() from exc
    if not isinstance(raw, dict):
        raise MalformedPayload()

    token = raw.get("sessionToken")
    if not isinstance(token, str) or not token.strip():
        raise MalformedPayload("QR code is missing the session token.")

    location = raw.get("location")
    if not isinstance(location, dict):
        raise MalformedPayload("QR code is missing the classroom location.")
    lat = location.get("lat")
    lng = location.get("lng")
    if not is_valid_coordinates(lat, lng):
        raise MalformedPayload("QR code has an invalid classroom location.")

    class_id = raw.get("classId")
    if class_id is not None and not isinstance(class_id, str):
        raise MalformedPayload("QR code has an invalid class id.")

    return CheckinPayload(
        token=token.strip(),
        anchor=Coordinates(lat=float(lat), lng=float(lng)),
        class_id=class_id,
        expires_at=_parse_expiry(raw.get("expiresAt")),
    )


def render_qr_png(payload: bytes, box_size: int = 10) -> bytes:
    """Render payload bytes as a PNG QR code."""
    image = _build_qr(payload, box_size).make_image(
        fill_color="black", back_color="white"
    )
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def render_qr_svg(payload: bytes, box_size: int = 10) -> bytes:
    """Render payload bytes as an SVG QR code."""
    image = _build_qr(payload, box_size).make_image(image_factory=SvgPathImage)
    buffer = io.BytesIO()
    image.save(buffer)
    return buffer.getvalue()


def _build_qr(payload: bytes, box_size: int) -> qrcode.QRCode:
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=box_size,
        border=1,
    )
    qr.add_data(payload)
    qr.make(fit=True)
    return qr


def _parse_expiry(value: object) -> datetime | None:
    """Parse the informational expiry, ignoring values that do not parse."""
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None
