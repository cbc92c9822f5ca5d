from __future__ import annotations

from typing import Protocol, runtime_checkable

from ..analysis.models import ExtractedEntities
from .models import ProjectRecord


@runtime_checkable
class Embedder(Protocol):
    async def embed(self, text: str) -> list[float]: ...

    async def embed_many(self, texts: list[str]) -> list[list[float]]: ...


@runtime_checkable
class MetadataExtractor(Protocol):
    """AI-assisted extraction. May raise any provider error, including MalformedResponseError."""

    async def extract_metadata(self, text: str, context_hint: str = "") -> ExtractedEntities: ...


@runtime_checkable
class ProjectStore(Protocol):
    """Read-only access to the external project store. Raises ProjectNotFoundError."""

    async def get_project(self, project_id: str) -> ProjectRecord: ...


@runtime_checkable
class Clock(Protocol):
    def __call__(self) -> float: ...
