"""
Persistence module.

The keeper talks to storage only through the Repository interface. An
in-memory implementation backs tests and dry runs; the SQLite one is the
production store.
"""
from .memory_store import InMemoryRepository
from .repository import Repository
from .sqlite_store import SqliteRepository

__all__ = ["InMemoryRepository", "Repository", "SqliteRepository"]
