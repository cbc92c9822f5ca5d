"""Read-only access to project records kept by the host application."""

from __future__ import annotations

import asyncio
import os
import re
import sqlite3
from collections.abc import Iterable

from ..core.models import ProjectRecord
from ..errors import ConfigurationError, ProjectNotFoundError

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class InMemoryProjectStore:
    """Project records held in a dict; useful for tests and embedding hosts."""

    def __init__(self, records: Iterable[ProjectRecord] = ()):
        self._records = {record.project_id: record for record in records}

    def put(self, record: ProjectRecord) -> None:
        self._records[record.project_id] = record

    async def get_project(self, project_id: str) -> ProjectRecord:
        try:
            return self._records[project_id]
        except KeyError:
            raise ProjectNotFoundError(project_id) from None


class SQLiteProjectStore:
    """
    Reads project rows from an SQLite database owned by another application.

    Expects a table with `id`, `title`, `content` and `updated_at` columns.
    The store never writes; queries run in a worker thread.
    """

    def __init__(self, path: str, table: str = "projects") -> None:
        if not _IDENTIFIER_RE.match(table):
            raise ConfigurationError(f"Invalid table name: {table!r}")
        self.path = path
        self.table = table

    def _connect(self) -> sqlite3.Connection:
        if not os.path.exists(self.path):
            raise sqlite3.OperationalError(f"database not found: {self.path}")
        conn = sqlite3.connect(f"file:{self.path}?mode=ro", uri=True)
        conn.row_factory = sqlite3.Row
        return conn

    def _fetch(self, project_id: str) -> sqlite3.Row | None:
        conn = self._connect()
        try:
            return conn.execute(
                f"SELECT id, title, content, updated_at FROM {self.table} WHERE id = ?",
                (project_id,),
            ).fetchone()
        finally:
            conn.close()

    async def get_project(self, project_id: str) -> ProjectRecord:
        row = await asyncio.to_thread(self._fetch, project_id)
        if row is None:
            raise ProjectNotFoundError(project_id)
        return ProjectRecord(
            project_id=str(row["id"]),
            title=row["title"],
            content=row["content"] or "",
            updated_at=row["updated_at"],
        )
