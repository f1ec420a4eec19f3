"""Concrete dependency adapters."""
from .database import DatabaseAdapter
from .cache import CacheAdapter
from .realtime import RealtimeAdapter

__all__ = [
    "DatabaseAdapter",
    "CacheAdapter",
    "RealtimeAdapter",
]
