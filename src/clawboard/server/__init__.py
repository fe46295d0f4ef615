"""HTTP and WebSocket surface for Clawboard."""

from .app import BoardContext, create_app

__all__ = ["BoardContext", "create_app"]
