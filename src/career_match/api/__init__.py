"""API package for Career Match."""

from .main import app, create_app

__all__ = ["app", "create_app"]
