"""HTTP surface for taskpilot."""

from taskpilot.server.routes import ChatBody, build_coordinator, create_app
from taskpilot.server.server import run_server

__all__ = ["ChatBody", "build_coordinator", "create_app", "run_server"]
