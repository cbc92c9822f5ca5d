from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

import numpy as np

from ...errors import DEGRADING_ERRORS
from ...store.logging import log_context
from ..models import Chunk, SearchStrategy, bounded_unique, utcnow
from ..protocols import Embedder

logger = logging.getLogger(__name__)

EXACT_MATCH_BONUS = 10.0
TERM_OCCURRENCE_WEIGHT = 3.0
CHARACTER_MATCH_BONUS = 5.0
THEME_MATCH_BONUS = 4.0
TAG_MATCH_BONUS = 2.0


def tokenize(text: str) -> list[str]:
    """
    Tokenize text into a list of alphanumeric tokens.

    Args:
        text: Input string to tokenize

    Returns:
        List of lowercase alphanumeric tokens
    """
    if not text:
        return []
    return re.findall(r"[a-z0-9]+", text.lower())


def query_terms(query: str) -> list[str]:
    """Distinct query tokens longer than two characters, in query order."""
    return list(dict.fromkeys(term for term in tokenize(query) if len(term) > 2))


def token_set(text: str) -> frozenset[str]:
    """Lower-cased whitespace tokens; the unit of near-duplicate detection."""
    return frozenset(text.lower().split())


def jaccard(a: frozenset[str] | set[str], b: frozenset[str] | set[str]) -> float:
    if not a and not b:
        return 1.0
    union = len(a | b)
    return len(a & b) / union if union else 0.0


def overlap_coefficient(a: set[str], b: set[str]) -> float:
    smaller = min(len(a), len(b))
    return len(a & b) / smaller if smaller else 0.0


def merge_chunk_metadata(existing: Chunk, incoming: Chunk) -> Chunk:
    """Fold a near-duplicate into the chunk already indexed.

    Returns a new object so concurrent readers keep seeing a whole chunk.
    """
    return existing.model_copy(
        update={
            "characters": bounded_unique([*existing.characters, *incoming.characters]),
            "themes": bounded_unique([*existing.themes, *incoming.themes]),
            "emotions": bounded_unique([*existing.emotions, *incoming.emotions]),
            "plot_elements": bounded_unique([*existing.plot_elements, *incoming.plot_elements]),
            "semantic_tags": bounded_unique([*existing.semantic_tags, *incoming.semantic_tags]),
            "importance": max(existing.importance, incoming.importance),
            "user_id": existing.user_id or incoming.user_id,
            "extra": {**existing.extra, **incoming.extra},
            "updated_at": utcnow(),
        }
    )


class VectorIndex:
    """
    Brute-force cosine index over normalized numpy vectors.

    The stacked matrix is rebuilt lazily after writes. Vectors whose
    dimension differs from the query are ignored.
    """

    def __init__(self) -> None:
        self._vectors: dict[str, np.ndarray] = {}
        self._matrix: np.ndarray | None = None
        self._ids: list[str] = []

    def __len__(self) -> int:
        return len(self._vectors)

    def __contains__(self, chunk_id: str) -> bool:
        return chunk_id in self._vectors

    def add(self, chunk_id: str, vector: Sequence[float]) -> None:
        array = np.asarray(vector, dtype=np.float32)
        norm = float(np.linalg.norm(array))
        if array.ndim != 1 or norm == 0.0:
            return
        self._vectors[chunk_id] = array / norm
        self._matrix = None

    def remove(self, chunk_ids: Iterable[str]) -> None:
        for chunk_id in chunk_ids:
            self._vectors.pop(chunk_id, None)
        self._matrix = None

    def clear(self) -> None:
        self._vectors.clear()
        self._matrix = None
        self._ids = []

    def search(
        self,
        query_vector: Sequence[float],
        top_k: int,
        allowed: set[str] | None = None,
    ) -> list[tuple[str, float]]:
        query = np.asarray(query_vector, dtype=np.float32)
        norm = float(np.linalg.norm(query))
        if norm == 0.0 or not self._vectors:
            return []
        query = query / norm

        matrix, ids = self._stacked(query.shape[0])
        if matrix is None:
            return []
        scores = matrix @ query
        ranked = np.argsort(-scores)

        results: list[tuple[str, float]] = []
        for position in ranked:
            chunk_id = ids[int(position)]
            if allowed is not None and chunk_id not in allowed:
                continue
            results.append((chunk_id, float(scores[int(position)])))
            if len(results) >= top_k:
                break
        return results

    def _stacked(self, dimension: int) -> tuple[np.ndarray | None, list[str]]:
        if self._matrix is None:
            self._ids = list(self._vectors)
            self._matrix = np.stack([self._vectors[i] for i in self._ids]) if self._ids else None
        if self._matrix is None:
            return None, []
        if self._matrix.shape[1] == dimension:
            return self._matrix, self._ids
        ids = [i for i in self._ids if self._vectors[i].shape[0] == dimension]
        if not ids:
            return None, []
        return np.stack([self._vectors[i] for i in ids]), ids


@dataclass
class LexicalScorer:
    """Term-frequency scoring used when the semantic path is unavailable."""

    exact_match_bonus: float = EXACT_MATCH_BONUS
    term_weight: float = TERM_OCCURRENCE_WEIGHT
    character_bonus: float = CHARACTER_MATCH_BONUS
    theme_bonus: float = THEME_MATCH_BONUS
    tag_bonus: float = TAG_MATCH_BONUS

    def score(self, query: str, chunk: Chunk) -> float:
        query_lower = query.strip().lower()
        if not query_lower:
            return 0.0
        content_lower = chunk.content.lower()
        terms = query_terms(query_lower)

        score = 0.0
        if query_lower in content_lower:
            score += self.exact_match_bonus

        for term in terms:
            occurrences = content_lower.count(term)
            if occurrences:
                score += occurrences * self.term_weight
            if any(term in character.lower() for character in chunk.characters):
                score += self.character_bonus
            if any(term in theme.lower() for theme in chunk.themes):
                score += self.theme_bonus
            if any(term in tag.lower() for tag in chunk.semantic_tags):
                score += self.tag_bonus

        return score + chunk.importance

    def search(self, query: str, candidates: Iterable[Chunk]) -> list[tuple[Chunk, float]]:
        scored = [(chunk, self.score(query, chunk)) for chunk in candidates]
        scored = [(chunk, score) for chunk, score in scored if score > 0]
        scored.sort(key=lambda item: item[1], reverse=True)
        return scored


@dataclass
class ChunkIndex:
    """
    Authoritative in-memory chunk collection.

    Writes are append-only and serialized by an asyncio lock around
    "append chunk + update partition map + vector insert". Readers get an
    immutable tuple view, so a search never sees a half-inserted chunk.
    """

    duplicate_threshold: float = 0.95
    vectors: VectorIndex = field(default_factory=VectorIndex)
    _chunks: dict[str, Chunk] = field(default_factory=dict)
    _partitions: dict[str | None, list[str]] = field(default_factory=dict)
    _token_sets: dict[str, frozenset[str]] = field(default_factory=dict)
    _view: tuple[Chunk, ...] | None = None
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def __len__(self) -> int:
        return len(self._chunks)

    def snapshot(self) -> tuple[Chunk, ...]:
        if self._view is None:
            self._view = tuple(self._chunks.values())
        return self._view

    def get(self, chunk_id: str) -> Chunk | None:
        return self._chunks.get(chunk_id)

    def project_ids(self) -> list[str]:
        return [pid for pid, ids in self._partitions.items() if pid is not None and ids]

    def project_chunks(self, project_id: str | None) -> list[Chunk]:
        return [self._chunks[i] for i in self._partitions.get(project_id, []) if i in self._chunks]

    def find_duplicate(self, content: str, project_id: str | None) -> Chunk | None:
        tokens = token_set(content)
        for chunk_id in self._partitions.get(project_id, []):
            if jaccard(tokens, self._token_sets[chunk_id]) > self.duplicate_threshold:
                return self._chunks[chunk_id]
        return None

    async def add(self, chunk: Chunk, vector: Sequence[float] | None = None) -> tuple[str, bool]:
        """Insert a chunk, or merge it into a near-duplicate in the same project.

        Returns:
            (chunk_id, inserted) where chunk_id is the existing id on merge.
        """
        async with self._lock:
            duplicate = self.find_duplicate(chunk.content, chunk.project_id)
            if duplicate is not None:
                self._chunks[duplicate.chunk_id] = merge_chunk_metadata(duplicate, chunk)
                self._view = None
                logger.debug(
                    "near-duplicate merged",
                    extra=log_context(
                        "chunk_index", project_id=chunk.project_id, chunk_id=duplicate.chunk_id
                    ),
                )
                return duplicate.chunk_id, False

            self._insert(chunk, vector)
            return chunk.chunk_id, True

    async def set_vector(self, chunk_id: str, vector: Sequence[float]) -> None:
        async with self._lock:
            if chunk_id in self._chunks:
                self.vectors.add(chunk_id, vector)

    async def remove_project(self, project_id: str) -> list[Chunk]:
        async with self._lock:
            removed_ids = self._partitions.pop(project_id, [])
            removed = [self._chunks.pop(i) for i in removed_ids if i in self._chunks]
            for chunk_id in removed_ids:
                self._token_sets.pop(chunk_id, None)
            self.vectors.remove(removed_ids)
            self._view = None
            return removed

    async def replace_all(self, chunks: Iterable[Chunk]) -> None:
        """Rebuild from scratch; partitions come from each chunk's project_id."""
        async with self._lock:
            self._chunks.clear()
            self._partitions.clear()
            self._token_sets.clear()
            self.vectors.clear()
            for chunk in chunks:
                self._insert(chunk, chunk.embedding)
            self._view = None

    def _insert(self, chunk: Chunk, vector: Sequence[float] | None) -> None:
        self._chunks[chunk.chunk_id] = chunk
        self._partitions.setdefault(chunk.project_id, []).append(chunk.chunk_id)
        self._token_sets[chunk.chunk_id] = token_set(chunk.content)
        if vector:
            self.vectors.add(chunk.chunk_id, vector)
        self._view = None


class DualModeIndex:
    """Semantic search when the embedder is healthy, lexical scoring otherwise.

    The choice is made per request; there is no sticky degraded mode.
    Candidates stored without a vector (their embedding failed at ingestion)
    are embedded before the semantic path runs, so they stay reachable once
    the embedder recovers.
    """

    def __init__(
        self,
        chunks: ChunkIndex,
        embedder: Embedder | None = None,
        scorer: LexicalScorer | None = None,
        *,
        embed_batch_size: int = 32,
    ):
        self.chunks = chunks
        self.embedder = embedder
        self.scorer = scorer or LexicalScorer()
        self.embed_batch_size = embed_batch_size

    async def search(
        self,
        query: str,
        candidates: Sequence[Chunk],
        top_n: int,
    ) -> tuple[list[tuple[Chunk, float]], SearchStrategy]:
        """
        Score candidates for a query.

        Returns:
            (hits, strategy) with hits ordered best first.

        Raises:
            ProviderError: for embedder failures other than rate limits,
                timeouts and missing backends, which fall back to lexical
                scoring instead.
        """
        if self.embedder is not None and candidates:
            try:
                query_vector = await self.embedder.embed(query)
                await self.backfill(candidates)
            except DEGRADING_ERRORS as e:
                logger.warning(
                    "semantic search unavailable, using lexical fallback: %s",
                    e,
                    extra=log_context("dual_mode_index", error_type=type(e).__name__),
                )
            else:
                hits = self._semantic(query_vector, candidates, top_n)
                if hits:
                    return hits, "semantic"
                logger.debug("semantic search returned nothing, trying lexical scoring")

        return self.scorer.search(query, candidates), "fallback"

    async def backfill(self, candidates: Sequence[Chunk]) -> int:
        """Embed candidates that have no vector yet; returns how many were stored."""
        pending = [chunk for chunk in candidates if chunk.chunk_id not in self.chunks.vectors]
        for start in range(0, len(pending), self.embed_batch_size):
            batch = pending[start : start + self.embed_batch_size]
            vectors = await self.embedder.embed_many([chunk.content for chunk in batch])
            for chunk, vector in zip(batch, vectors, strict=True):
                await self.chunks.set_vector(chunk.chunk_id, vector)
        if pending:
            logger.info(
                "vectorless chunks embedded",
                extra=log_context("dual_mode_index", chunks=len(pending)),
            )
        return len(pending)

    def _semantic(
        self,
        query_vector: Sequence[float],
        candidates: Sequence[Chunk],
        top_n: int,
    ) -> list[tuple[Chunk, float]]:
        by_id = {chunk.chunk_id: chunk for chunk in candidates}
        ranked = self.chunks.vectors.search(query_vector, top_n, allowed=set(by_id))
        return [(by_id[chunk_id], score) for chunk_id, score in ranked if score > 0]
