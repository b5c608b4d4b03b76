"""ASGI entrypoint for the classroom check-in API."""

from classroom_checkin.api.app import create_app
from classroom_checkin.containers import build_container

app = create_app(build_container())
