"""Capability-scoped file sharing with abuse control."""

from .main import create_app
from .settings import ShareSettings

__all__ = ["create_app", "ShareSettings"]
