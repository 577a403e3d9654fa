"""ASGI entrypoint for the scan diagnostics API."""

from scan_diagnostics.api.app import create_app
from scan_diagnostics.containers import build_container

app = create_app(build_container())
