"""HTTP API: stream relay, conversation orchestration, config management."""

from reqpilot.api.app import create_app

__all__ = ["create_app"]
