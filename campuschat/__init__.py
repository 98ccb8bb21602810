"""campuschat: messaging backend with real-time delivery over WebSockets."""

from .app import create_app

__all__ = ["create_app"]
