"""Repository pattern implementation."""

from .base import BaseRepository, T_Model
from .protocols import ICacheEntryRepository, IFastStore, IUnitOfWork

__all__ = [
    "BaseRepository",
    "ICacheEntryRepository",
    "IFastStore",
    "IUnitOfWork",
    "T_Model",
]
