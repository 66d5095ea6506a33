"""ASGI entrypoint for the health assistant API."""

from health_assistant.api.app import create_app
from health_assistant.containers import build_container

app = create_app(build_container())
