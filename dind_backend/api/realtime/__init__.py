"""Realtime WebSocket hub."""
from .hub import ConnectionHub

__all__ = ["ConnectionHub"]
