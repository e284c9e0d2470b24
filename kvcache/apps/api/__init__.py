"""HTTP surface of the cache service."""

from .main import create_app

__all__ = ["create_app"]
