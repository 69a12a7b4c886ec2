"""HTTP layer of the media service."""

from .server import create_app

__all__ = ["create_app"]
