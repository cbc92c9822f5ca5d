from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Sequence
from datetime import datetime
from typing import Any
from uuid import uuid4

from langchain_core.embeddings.embeddings import Embeddings
from langchain_core.language_models.base import BaseLanguageModel
from pydantic import ValidationError

from ..analysis.extractors import RuleBasedExtractor
from ..analysis.llm_extractor import LLMMetadataExtractor, LLMQueryAnalyzer
from ..cache import CacheKeys, TTLCache
from ..configs import EngineConfig
from ..embeddings.cache import CachedEmbeddings
from ..embeddings.guard import GuardedEmbedder, ProviderGuard
from ..errors import PersistenceError, ProviderError
from ..rerankers.base import BaseReranker
from ..rerankers.llm import NEUTRAL_RELEVANCE, LLMRelevanceReranker
from ..store.logging import elapsed_ms, log_context
from ._internal.chunking import DocumentSplitter, TextSegment
from ._internal.context import build_hit, build_project_insights, build_search_summary
from ._internal.enrichment import ContentEnricher
from ._internal.indexing import ChunkIndex, DualModeIndex, LexicalScorer
from ._internal.persistence import Persistence, SnapshotManager
from ._internal.profiles import ProfileAggregator
from ._internal.scoring import ChunkFilter, ContextualRanker, RankedChunk
from .models import (
    MAX_PROFILE_CHARACTERS,
    MAX_PROFILE_THEMES,
    Chunk,
    ContentType,
    DocumentMetadata,
    EngineStats,
    MetadataBundle,
    ProfileEntities,
    ProjectProfile,
    ProjectStats,
    SearchOptions,
    SearchResponse,
    bounded_unique,
)
from .protocols import Clock, Embedder, ProjectStore

logger = logging.getLogger(__name__)

PROJECT_CONTENT_IMPORTANCE = 8.0
PROJECT_CONTENT_TAGS = ["database", "project-content"]
STATS_LIST_CAP = 20


def _rank_key(item: RankedChunk) -> tuple[float, float, datetime]:
    return item.score, item.chunk.importance, item.chunk.created_at


class RetrievalEngine:
    """Context-aware retrieval over a writer's projects."""

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        embeddings: Embeddings | None = None,
        llm: BaseLanguageModel | None = None,
        project_store: ProjectStore | None = None,
        reranker: BaseReranker | None = None,
        embedder: Embedder | None = None,
        persistence: Persistence | None = None,
        clock: Clock | None = None,
    ):
        """
        Initializes the RetrievalEngine.

        Args:
            config: Engine configuration; defaults for every concern when omitted.
            embeddings: Optional LangChain embeddings. Without them (or a custom
                `embedder`) every search takes the lexical path.
            llm: Optional chat model for AI metadata extraction, query analysis
                and relevance reranking, each enabled by config flags.
            project_store: Optional read-only source of project content used
                for profile sync and the project-content fallback.
            reranker: Optional reranker; overrides the config-driven LLM reranker.
            embedder: Optional Embedder implementation used instead of wrapping
                `embeddings`.
            persistence: Optional snapshot backend; defaults to a SnapshotManager
                at `config.persistence.path`.
            clock: Monotonic clock shared by the cache and provider guards.
        """
        self.config = config or EngineConfig()
        self.project_store = project_store
        self._optimize_task: asyncio.Task[None] | None = None
        self._started = False

        self._init_cache(clock)
        self._init_providers(embeddings=embeddings, embedder=embedder, llm=llm, clock=clock)
        self._init_components(reranker=reranker, llm=llm, persistence=persistence)

    def _init_cache(self, clock: Clock | None) -> None:
        cache_config = self.config.cache
        self.cache = TTLCache(
            cache_config.default_ttl,
            max_keys=cache_config.max_keys,
            evict_fraction=cache_config.evict_fraction,
            counter_reset=cache_config.counter_reset,
            clock=clock,
        )

    def _init_providers(
        self,
        *,
        embeddings: Embeddings | None,
        embedder: Embedder | None,
        llm: BaseLanguageModel | None,
        clock: Clock | None,
    ) -> None:
        provider = self.config.provider
        # Separate guards so an LLM rate limit does not disable semantic search
        self.embedding_guard = ProviderGuard(
            provider.timeout_seconds,
            provider.cooldown_seconds,
            provider.max_calls_per_minute,
            clock=clock,
        )
        self.llm_guard = ProviderGuard(
            provider.timeout_seconds,
            provider.cooldown_seconds,
            provider.max_calls_per_minute,
            clock=clock,
        )

        self.cached_embeddings: CachedEmbeddings | None = None
        if embedder is not None:
            self.embedder: Embedder | None = embedder
        elif embeddings is not None:
            self.cached_embeddings = CachedEmbeddings(
                embeddings,
                max_size=self.config.cache.embedding_cache_size,
                ttl_seconds=self.config.cache.embedding_ttl,
            )
            self.embedder = GuardedEmbedder(self.cached_embeddings, self.embedding_guard)
        else:
            self.embedder = None

        use_ai = llm is not None and provider.use_ai_extraction
        self.metadata_extractor = LLMMetadataExtractor(llm, self.llm_guard) if use_ai else None
        self.query_analyzer = (
            LLMQueryAnalyzer(llm, self.llm_guard)
            if use_ai and self.config.search.analyze_queries
            else None
        )

    def _init_components(
        self,
        *,
        reranker: BaseReranker | None,
        llm: BaseLanguageModel | None,
        persistence: Persistence | None,
    ) -> None:
        cache_config = self.config.cache
        ingestion = self.config.ingestion

        self.splitter = DocumentSplitter(ingestion.chunk_size, ingestion.chunk_overlap)
        self.enricher = ContentEnricher(
            self.cache,
            extractor=self.metadata_extractor,
            rules=RuleBasedExtractor(),
            query_analyzer=self.query_analyzer,
            analysis_ttl=cache_config.analysis_ttl,
            fallback_ttl=cache_config.fallback_analysis_ttl,
        )
        self.index = ChunkIndex(duplicate_threshold=ingestion.duplicate_threshold)
        self.scorer = LexicalScorer()
        self.search_index = DualModeIndex(
            self.index, self.embedder, self.scorer, embed_batch_size=ingestion.embed_batch_size
        )
        self.ranker = ContextualRanker()
        self.profiles = ProfileAggregator(
            self.cache,
            self.enricher,
            self.project_store,
            profile_ttl=cache_config.profile_ttl,
            project_ttl=cache_config.project_ttl,
        )

        if reranker is None and llm is not None and self.config.search.ai_rerank:
            reranker = LLMRelevanceReranker(llm, self.llm_guard)
        self.reranker = reranker

        self.persistence: Persistence = persistence or SnapshotManager(
            self.config.persistence.path,
            keep_backups=self.config.persistence.keep_backups,
            enabled=self.config.persistence.enabled,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Load the snapshot and start periodic cache maintenance."""
        if self._started:
            return
        await self.load()
        interval = self.config.cache.optimize_interval
        if interval > 0:
            self._optimize_task = asyncio.create_task(self._optimize_loop(interval))
        self._started = True

    async def close(self) -> None:
        if self._optimize_task is not None:
            self._optimize_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._optimize_task
            self._optimize_task = None
        self._started = False

    async def __aenter__(self) -> RetrievalEngine:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _optimize_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            removed = self.cache.optimize()
            if removed:
                logger.debug("cache maintenance removed %d entries", removed)

    async def load(self) -> int:
        """Replace in-memory state with the snapshot; returns the chunk count.

        An unreadable snapshot leaves the engine empty rather than failing.
        """
        started = time.perf_counter()
        try:
            snapshot = await self.persistence.load()
        except PersistenceError as e:
            logger.error("snapshot could not be loaded, starting empty: %s", e)
            return 0

        await self.index.replace_all(snapshot.chunks)
        self.profiles.load(snapshot.profiles)
        self.cache.clear()
        await self._embed_loaded(snapshot.chunks)

        logger.info(
            "engine state loaded",
            extra=log_context(
                "engine",
                duration_ms=elapsed_ms(started),
                chunks=len(self.index),
                projects=len(snapshot.profiles),
            ),
        )
        return len(self.index)

    async def _embed_loaded(self, chunks: Sequence[Chunk]) -> None:
        pending = [chunk for chunk in chunks if chunk.chunk_id not in self.index.vectors]
        if self.embedder is None or not pending:
            return
        batch_size = self.config.ingestion.embed_batch_size
        for start in range(0, len(pending), batch_size):
            batch = pending[start : start + batch_size]
            try:
                vectors = await self.embedder.embed_many([chunk.content for chunk in batch])
            except ProviderError as e:
                logger.warning(
                    "re-embedding stopped, remaining chunks are lexical-only: %s",
                    e,
                    extra=log_context("engine", remaining=len(pending) - start),
                )
                return
            for chunk, vector in zip(batch, vectors, strict=True):
                await self.index.set_vector(chunk.chunk_id, vector)

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def add_document(
        self,
        content: str,
        metadata: DocumentMetadata | dict[str, Any] | None = None,
    ) -> list[str]:
        """
        Chunk, enrich, embed and index a document.

        Returns:
            Ids of the chunks holding the document, in document order. A chunk
            merged into a near-duplicate reports the existing chunk's id.
            Blank content or an ingestion failure returns an empty list.
        """
        if not content or not content.strip():
            return []
        project_id = None
        try:
            meta = (
                metadata
                if isinstance(metadata, DocumentMetadata)
                else DocumentMetadata.model_validate(metadata or {})
            )
            project_id = meta.project_id
            return await self._ingest(content, meta)
        except Exception:
            logger.exception(
                "add_document failed", extra=log_context("engine", project_id=project_id)
            )
            return []

    async def _ingest(self, content: str, meta: DocumentMetadata) -> list[str]:
        started = time.perf_counter()
        project_id = meta.project_id
        profile = self.profiles.get(project_id) if project_id else None
        segments = self.splitter.split(content)
        document_id = meta.document_id or str(uuid4())

        bundles = await asyncio.gather(
            *(self.enricher.enrich(segment.text, profile) for segment in segments)
        )
        chunks = [
            self._make_chunk(segment, bundle, meta, document_id)
            for segment, bundle in zip(segments, bundles, strict=True)
        ]
        vectors = await self._embed_chunks(chunks)

        chunk_ids: list[str] = []
        inserted = 0
        for chunk, vector in zip(chunks, vectors, strict=True):
            chunk_id, is_new = await self.index.add(chunk, vector)
            chunk_ids.append(chunk_id)
            inserted += int(is_new)

        if project_id:
            for bundle in bundles:
                self.profiles.merge(
                    project_id,
                    ProfileEntities.from_bundle(bundle, meta.characters, meta.themes),
                )
        self._invalidate_project(project_id)
        await self._save_snapshot()

        logger.info(
            "document ingested",
            extra=log_context(
                "engine",
                project_id=project_id,
                duration_ms=elapsed_ms(started),
                chunks=len(chunks),
                inserted=inserted,
                merged=len(chunks) - inserted,
            ),
        )
        return list(dict.fromkeys(chunk_ids))

    def _make_chunk(
        self,
        segment: TextSegment,
        bundle: MetadataBundle,
        meta: DocumentMetadata,
        document_id: str,
    ) -> Chunk:
        fields: dict[str, Any] = {
            "content": segment.text,
            "project_id": meta.project_id,
            "user_id": meta.user_id,
            "document_id": document_id,
            "content_type": meta.content_type or bundle.content_type,
            "characters": [*meta.characters, *bundle.characters],
            "themes": [*meta.themes, *bundle.themes],
            "emotions": bundle.emotions,
            "plot_elements": bundle.plot_elements,
            "semantic_tags": bundle.semantic_tags,
            "importance": bundle.importance if meta.importance is None else meta.importance,
            "chunk_index": segment.index,
            "total_chunks": segment.total,
            "word_count": segment.word_count,
            "previous_context": segment.previous_context,
            "next_context": segment.next_context,
            "extra": {**meta.extra, **({"title": meta.title} if meta.title else {})},
        }
        if meta.created_at is not None:
            fields["created_at"] = meta.created_at
        return Chunk(**fields)

    async def _embed_chunks(self, chunks: Sequence[Chunk]) -> list[list[float] | None]:
        missing: list[list[float] | None] = [None] * len(chunks)
        if self.embedder is None:
            return missing
        vectors: list[list[float] | None] = []
        batch_size = self.config.ingestion.embed_batch_size
        try:
            for start in range(0, len(chunks), batch_size):
                batch = chunks[start : start + batch_size]
                vectors.extend(await self.embedder.embed_many([chunk.content for chunk in batch]))
        except ProviderError as e:
            logger.warning(
                "embedding unavailable, indexing lexically: %s",
                e,
                extra=log_context("engine", error_type=type(e).__name__),
            )
        except Exception:
            logger.exception("embedding failed, indexing lexically")
        return [*vectors, *missing[len(vectors) :]]

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def intelligent_search(
        self,
        query: str,
        options: SearchOptions | dict[str, Any] | None = None,
    ) -> SearchResponse:
        """
        Rank chunks for a query.

        Semantic search is used when the embedder answers; rate limits,
        timeouts and missing backends fall back to lexical scoring for this
        request only. Results are filtered, ranked, enriched with context and
        truncated to the limit. Never raises: failures produce an empty
        response.
        """
        try:
            opts = (
                options
                if isinstance(options, SearchOptions)
                else SearchOptions.model_validate(options or {})
            )
        except ValidationError:
            logger.exception("invalid search options")
            return SearchResponse()

        if not query or not query.strip():
            return SearchResponse(results=[])

        try:
            return await self._search(query.strip(), opts)
        except Exception:
            logger.exception(
                "intelligent_search failed",
                extra=log_context("engine", project_id=opts.project_id),
            )
            return SearchResponse()

    async def _search(self, query: str, opts: SearchOptions) -> SearchResponse:
        started = time.perf_counter()
        search_config = self.config.search
        project_id = opts.project_id
        limit = opts.limit or search_config.default_limit
        include_context = (
            search_config.include_context if opts.include_context is None else opts.include_context
        )

        cache_key = CacheKeys.search(
            query, project_id, opts.model_dump(mode="json", exclude={"project_id"})
        )
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached.model_copy(deep=True)

        profile = await self.sync_project_context(project_id) if project_id else None
        analysis = (
            await self.enricher.analyze_query(query, profile)
            if search_config.analyze_queries
            else None
        )

        candidates = (
            self.index.project_chunks(project_id) if project_id else list(self.index.snapshot())
        )
        top_n = max(limit * search_config.overfetch_factor, search_config.min_candidates)
        hits, strategy = await self.search_index.search(query, candidates, top_n)
        if not candidates and project_id:
            hits = await self._project_content_hits(query, project_id)

        filtered = ChunkFilter(opts, search_config.default_min_importance).apply(hits)
        ranked = self.ranker.rank(filtered, query, project_id, analysis)
        if self.reranker is not None and ranked:
            ranked = await self._rerank(query, ranked, limit)
        ranked = ranked[:limit]

        results = [
            build_hit(
                item.chunk,
                item.score,
                item.base_score,
                query,
                self.index.project_chunks(item.chunk.project_id) if include_context else None,
                related_threshold=self.config.ingestion.related_threshold,
                max_related=self.config.ingestion.max_related,
            )
            for item in ranked
        ]
        insights = (
            build_project_insights(results, query, candidates, profile)
            if project_id and opts.include_insights
            else None
        )
        response = SearchResponse(
            results=results,
            project_insights=insights,
            search_summary=build_search_summary(results, strategy),
        )
        if results:
            self.cache.set(cache_key, response, ttl=self.config.cache.search_ttl)

        logger.debug(
            "search done",
            extra=log_context(
                "engine",
                project_id=project_id,
                duration_ms=elapsed_ms(started),
                strategy=strategy,
                candidates=len(hits),
                results=len(results),
            ),
        )
        return response.model_copy(deep=True)

    async def _project_content_hits(self, query: str, project_id: str) -> list[tuple[Chunk, float]]:
        """Score the project's stored content when the project has no indexed chunks."""
        record = await self.profiles.fetch_record(project_id)
        if record is None or not record.content.strip():
            return []
        chunk = Chunk(
            chunk_id=f"project:{project_id}",
            content=record.content,
            project_id=project_id,
            content_type=ContentType.PROJECT,
            importance=PROJECT_CONTENT_IMPORTANCE,
            semantic_tags=PROJECT_CONTENT_TAGS,
            word_count=len(record.content.split()),
            extra={"title": record.title} if record.title else {},
        )
        score = self.scorer.score(query, chunk)
        return [(chunk, score)] if score > 0 else []

    async def _rerank(self, query: str, ranked: list[RankedChunk], limit: int) -> list[RankedChunk]:
        pool = ranked[: limit * 2]
        try:
            graded = await self.reranker.rerank(query, [item.chunk for item in pool])
        except Exception:
            logger.exception("reranking failed, keeping contextual order")
            return ranked
        relevance = {chunk.chunk_id: score for chunk, score in graded}
        blended = [
            RankedChunk(
                chunk=item.chunk,
                score=item.score * (0.5 + relevance.get(item.chunk.chunk_id, NEUTRAL_RELEVANCE)),
                base_score=item.base_score,
            )
            for item in pool
        ]
        blended.sort(key=_rank_key, reverse=True)
        return blended

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    async def sync_project_context(self, project_id: str) -> ProjectProfile | None:
        """Current profile for a project, building it when needed; None if unknown."""
        try:
            return await self.profiles.sync(project_id, self.index.project_chunks(project_id))
        except Exception:
            logger.exception(
                "profile sync failed", extra=log_context("engine", project_id=project_id)
            )
            return None

    async def get_project_stats(self, project_id: str) -> ProjectStats:
        key = CacheKeys.project_stats(project_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached.model_copy(deep=True)
        try:
            stats = self._compute_project_stats(project_id)
        except Exception:
            logger.exception(
                "project stats failed", extra=log_context("engine", project_id=project_id)
            )
            return ProjectStats(project_id=project_id)
        self.cache.set(key, stats)
        return stats.model_copy(deep=True)

    def _compute_project_stats(self, project_id: str) -> ProjectStats:
        chunks = self.index.project_chunks(project_id)
        profile = self.profiles.get(project_id)
        profile_characters = profile.characters if profile else []
        profile_themes = profile.themes if profile else []

        timestamps = [chunk.updated_at or chunk.created_at for chunk in chunks]
        if profile is not None:
            timestamps.append(profile.last_updated)

        return ProjectStats(
            project_id=project_id,
            total_documents=len({chunk.document_id or chunk.chunk_id for chunk in chunks}),
            total_chunks=len(chunks),
            characters=bounded_unique(
                [*(c for chunk in chunks for c in chunk.characters), *profile_characters],
                cap=MAX_PROFILE_CHARACTERS,
            ),
            themes=bounded_unique(
                [*(t for chunk in chunks for t in chunk.themes), *profile_themes],
                cap=MAX_PROFILE_THEMES,
            ),
            content_types=list(dict.fromkeys(chunk.content_type.value for chunk in chunks)),
            emotions=bounded_unique(
                [e for chunk in chunks for e in chunk.emotions], cap=STATS_LIST_CAP
            ),
            plot_elements=bounded_unique(
                [p for chunk in chunks for p in chunk.plot_elements], cap=STATS_LIST_CAP
            ),
            semantic_tags=bounded_unique(
                [t for chunk in chunks for t in chunk.semantic_tags], cap=STATS_LIST_CAP
            ),
            average_importance=(
                round(sum(chunk.importance for chunk in chunks) / len(chunks), 2) if chunks else 0.0
            ),
            total_word_count=sum(chunk.word_count for chunk in chunks),
            last_updated=max(timestamps) if timestamps else None,
        )

    async def delete_project_documents(self, project_id: str) -> int:
        """Remove every chunk of a project and its profile; returns the chunk count removed."""
        try:
            had_profile = project_id in self.profiles
            removed = await self.index.remove_project(project_id)
            self.profiles.drop(project_id)
            self._invalidate_project(project_id)
            if removed or had_profile:
                await self._save_snapshot()
        except Exception:
            logger.exception(
                "project deletion failed", extra=log_context("engine", project_id=project_id)
            )
            return 0
        logger.info(
            "project documents deleted",
            extra=log_context("engine", project_id=project_id, removed=len(removed)),
        )
        return len(removed)

    def get_stats(self) -> EngineStats:
        chunks = self.index.snapshot()
        theme_counts: dict[str, int] = {}
        character_counts: dict[str, int] = {}
        for chunk in chunks:
            for theme in chunk.themes:
                theme_counts[theme] = theme_counts.get(theme, 0) + 1
            for character in chunk.characters:
                character_counts[character] = character_counts.get(character, 0) + 1

        cache_stats: dict[str, float] = self.cache.stats().as_dict()
        if self.cached_embeddings is not None:
            cache_stats["embedding_hit_rate"] = self.cached_embeddings.hit_rate

        return EngineStats(
            total_documents=len({chunk.document_id or chunk.chunk_id for chunk in chunks}),
            total_projects=len(set(self.index.project_ids()) | set(self.profiles.all())),
            total_chunks=len(chunks),
            average_importance=(
                round(sum(chunk.importance for chunk in chunks) / len(chunks), 2) if chunks else 0.0
            ),
            top_themes=sorted(theme_counts, key=lambda t: -theme_counts[t])[:10],
            top_characters=sorted(character_counts, key=lambda c: -character_counts[c])[:10],
            last_updated=max((chunk.updated_at or chunk.created_at for chunk in chunks), default=None),
            cache=cache_stats,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _invalidate_project(self, project_id: str | None) -> None:
        if project_id:
            self.cache.delete(CacheKeys.project_context(project_id))
            self.cache.delete(CacheKeys.project_stats(project_id))
            self.cache.delete_pattern(f"search:{project_id}:")
        self.cache.delete_pattern("search:all:")

    async def _save_snapshot(self) -> None:
        try:
            await self.persistence.save(self.index.snapshot(), self.profiles.all())
        except PersistenceError as e:
            logger.warning("snapshot write failed, in-memory state kept: %s", e)
