from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import shutil
import tempfile
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from pydantic import ValidationError

from ...errors import PersistenceError
from ...store.logging import elapsed_ms, log_context
from ..models import Chunk, ProjectProfile, coerce_datetime, utcnow

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = "4.0"


@dataclass
class Snapshot:
    chunks: list[Chunk] = field(default_factory=list)
    profiles: dict[str, ProjectProfile] = field(default_factory=dict)
    version: str | None = None
    timestamp: datetime | None = None
    skipped: int = 0


@runtime_checkable
class Persistence(Protocol):
    async def save(self, chunks: Iterable[Chunk], profiles: Mapping[str, ProjectProfile]) -> None: ...
    async def load(self) -> Snapshot: ...


def serialize_snapshot(chunks: Iterable[Chunk], profiles: Mapping[str, ProjectProfile]) -> str:
    payload: dict[str, Any] = {
        "documents": [chunk.to_document() for chunk in chunks],
        "projectContexts": {
            project_id: profile.model_dump(mode="json")
            for project_id, profile in profiles.items()
        },
        "timestamp": utcnow().isoformat(),
        "version": SNAPSHOT_VERSION,
    }
    return json.dumps(payload, indent=2, ensure_ascii=False)


def parse_snapshot(raw: str, path: str | None = None) -> Snapshot:
    """Parse snapshot text. Bad documents and profiles are skipped, a bad file raises."""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise PersistenceError("Snapshot is not valid JSON", path=path, original_error=e) from e
    if not isinstance(data, dict):
        raise PersistenceError("Snapshot root must be an object", path=path)

    snapshot = Snapshot(
        version=data.get("version"),
        timestamp=coerce_datetime(data.get("timestamp")),
    )

    documents = data.get("documents") or []
    if not isinstance(documents, list):
        raise PersistenceError("Snapshot 'documents' must be a list", path=path)
    for position, document in enumerate(documents):
        try:
            if not isinstance(document, dict) or not str(document.get("content") or "").strip():
                raise ValueError("document has no content")
            snapshot.chunks.append(Chunk.from_document(document))
        except (ValidationError, ValueError, TypeError) as e:
            snapshot.skipped += 1
            logger.warning("skipping unreadable snapshot document %d: %s", position, e)

    contexts = data.get("projectContexts") or {}
    if isinstance(contexts, dict):
        for project_id, raw_profile in contexts.items():
            try:
                snapshot.profiles[project_id] = ProjectProfile.model_validate(
                    {**(raw_profile or {}), "project_id": project_id}
                )
            except (ValidationError, TypeError) as e:
                logger.warning("skipping unreadable profile for project %s: %s", project_id, e)
    return snapshot


class SnapshotManager:
    """
    Whole-state JSON snapshots with timestamped backups.

    Each save copies the current file to `<stem>.backup.<epoch_ms>.json`,
    writes a temp file in the same directory and renames it into place, then
    prunes backups beyond `keep_backups`. Writes are serialized.
    """

    def __init__(self, path: str | os.PathLike[str], *, keep_backups: int = 10, enabled: bool = True):
        self.path = Path(path)
        self.keep_backups = keep_backups
        self.enabled = enabled
        self._write_lock = asyncio.Lock()

    async def save(self, chunks: Iterable[Chunk], profiles: Mapping[str, ProjectProfile]) -> None:
        if not self.enabled:
            return
        # Serialize on the loop so the snapshot reflects one consistent moment
        payload = serialize_snapshot(list(chunks), dict(profiles))
        started = time.perf_counter()
        async with self._write_lock:
            await asyncio.to_thread(self._write, payload)
        logger.debug(
            "snapshot saved",
            extra=log_context("snapshot", duration_ms=elapsed_ms(started), path=str(self.path)),
        )

    async def load(self) -> Snapshot:
        if not self.enabled or not self.path.exists():
            return Snapshot()
        try:
            raw = await asyncio.to_thread(self.path.read_text, encoding="utf-8")
        except OSError as e:
            raise PersistenceError("Failed to read snapshot", path=str(self.path), original_error=e) from e

        snapshot = parse_snapshot(raw, str(self.path))
        logger.info(
            "snapshot loaded",
            extra=log_context(
                "snapshot",
                path=str(self.path),
                chunks=len(snapshot.chunks),
                projects=len(snapshot.profiles),
                skipped=snapshot.skipped,
            ),
        )
        return snapshot

    def backups(self) -> list[Path]:
        """Existing backups, oldest first."""
        pattern = re.compile(re.escape(self.path.stem) + r"\.backup\.(\d+)\.json$")
        found = []
        if not self.path.parent.exists():
            return []
        for candidate in self.path.parent.iterdir():
            match = pattern.match(candidate.name)
            if match:
                found.append((int(match.group(1)), candidate))
        return [path for _, path in sorted(found)]

    def _write(self, payload: str) -> None:
        directory = self.path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            if self.path.exists():
                backup = directory / f"{self.path.stem}.backup.{int(time.time() * 1000)}.json"
                shutil.copy2(self.path, backup)

            fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=f".{self.path.stem}_", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                os.replace(tmp_path, self.path)
            except BaseException:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass
                raise
            self._prune()
        except OSError as e:
            raise PersistenceError("Failed to write snapshot", path=str(self.path), original_error=e) from e

    def _prune(self) -> None:
        if self.keep_backups <= 0:
            return
        for stale in self.backups()[: -self.keep_backups]:
            try:
                stale.unlink()
            except OSError as e:
                logger.warning("could not remove old backup %s: %s", stale, e)
