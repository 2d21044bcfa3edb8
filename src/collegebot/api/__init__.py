"""HTTP surface for streaming conversations."""

from .server import ChatServices, create_app

__all__ = ["ChatServices", "create_app"]
