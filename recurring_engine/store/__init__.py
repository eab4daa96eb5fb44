"""
Store interface and the in-memory reference implementation.
"""

from .base import EngineStore
from .memory_store import InMemoryStore

__all__ = [
    "EngineStore",
    "InMemoryStore",
]
