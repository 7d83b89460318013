"""HTTP and WebSocket interface for the Taskmaster backend."""

from .api import create_app

__all__ = ["create_app"]
