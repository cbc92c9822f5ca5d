from __future__ import annotations

from .projects import InMemoryProjectStore, SQLiteProjectStore

__all__ = ["InMemoryProjectStore", "SQLiteProjectStore"]
