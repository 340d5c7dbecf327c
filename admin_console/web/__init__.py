"""Web front-end for the admin console."""

from .server import create_app

__all__ = ["create_app"]
