"""Repositories for the durable store."""

from .cache_entry import CacheEntryRepository

__all__ = ["CacheEntryRepository"]
