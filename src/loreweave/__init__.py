from __future__ import annotations

from .configs import EngineConfig
from .core.builder import EngineBuilder
from .core.engine import RetrievalEngine
from .core.models import (
    Chunk,
    ContentType,
    DocumentMetadata,
    ProjectProfile,
    ProjectStats,
    SearchOptions,
    SearchResponse,
)
from .errors import (
    ConfigurationError,
    LoreweaveError,
    MalformedResponseError,
    PersistenceError,
    ProjectNotFoundError,
    ProviderError,
    ProviderTimeoutError,
    RateLimitedError,
    UnavailableError,
)

__all__ = [
    "Chunk",
    "ContentType",
    "DocumentMetadata",
    "EngineBuilder",
    "EngineConfig",
    "ProjectProfile",
    "ProjectStats",
    "RetrievalEngine",
    "SearchOptions",
    "SearchResponse",
    # Error types
    "LoreweaveError",
    "ProviderError",
    "RateLimitedError",
    "UnavailableError",
    "ProviderTimeoutError",
    "MalformedResponseError",
    "ProjectNotFoundError",
    "PersistenceError",
    "ConfigurationError",
]
