from __future__ import annotations

from .builder import EngineBuilder
from .engine import RetrievalEngine
from .models import Chunk, ContentType, ProjectProfile, SearchHit, SearchOptions, SearchResponse
from .protocols import Embedder, MetadataExtractor, ProjectStore

__all__ = [
    "Chunk",
    "ContentType",
    "Embedder",
    "EngineBuilder",
    "MetadataExtractor",
    "ProjectProfile",
    "ProjectStore",
    "RetrievalEngine",
    "SearchHit",
    "SearchOptions",
    "SearchResponse",
]
