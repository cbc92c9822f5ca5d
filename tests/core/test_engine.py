"""End-to-end tests for RetrievalEngine."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from langchain_core.language_models.fake import FakeListLLM

from loreweave.configs import EngineConfig, PersistenceConfig, ProviderConfig
from loreweave.core.engine import RetrievalEngine
from loreweave.core.models import ContentType, ProjectRecord, SearchOptions
from loreweave.errors import MalformedResponseError, PersistenceError, RateLimitedError
from loreweave.rerankers.base import BaseReranker
from loreweave.store.projects import InMemoryProjectStore

THOR = "Thor wielded Mjolnir against the frost giants of Jotunheim."
ODIN = "Odin, the god of Asgard, ruled the nine realms."


class SleeperFirstReranker(BaseReranker):
    """Prefers chunks about sleeping."""

    async def score(self, query, chunk):
        return 1.0 if "slept" in chunk.content else 0.0


@pytest.fixture
def semantic_engine(engine_config, switchable_embedder):
    return RetrievalEngine(engine_config, embedder=switchable_embedder)


class TestExampleScenarios:
    @pytest.mark.asyncio
    async def test_ingested_text_is_searchable(self, engine):
        """A project document is found by a query naming its character."""
        ids = await engine.add_document(THOR, {"projectId": "P1"})
        assert len(ids) == 1

        response = await engine.intelligent_search("Thor", {"projectId": "P1"})

        assert len(response.results) >= 1
        assert "Thor" in response.results[0].chunk.content
        assert response.search_summary.search_strategy == "fallback"

    @pytest.mark.asyncio
    async def test_semantic_search_when_embedder_is_healthy(self, semantic_engine):
        await semantic_engine.add_document(THOR, {"projectId": "P1"})
        response = await semantic_engine.intelligent_search("frost giants", {"projectId": "P1"})
        assert response.search_summary.search_strategy == "semantic"
        assert response.results[0].chunk.content == THOR

    @pytest.mark.asyncio
    async def test_near_duplicate_documents_collapse(self, engine):
        base = " ".join(f"rune{i}" for i in range(60))
        first = await engine.add_document(f"{base} Thor", {"projectId": "P1"})
        second = await engine.add_document(f"{base} Loki", {"projectId": "P1"})

        assert first == second
        assert len(engine.index.project_chunks("P1")) == 1

    @pytest.mark.asyncio
    async def test_rate_limited_embedder_falls_back_to_lexical(
        self, semantic_engine, switchable_embedder
    ):
        await semantic_engine.add_document(ODIN, {"importance": 7})
        await semantic_engine.add_document(THOR, {"importance": 5})
        switchable_embedder.error = RateLimitedError("quota exhausted", "embed")

        response = await semantic_engine.intelligent_search("mythology", {})

        assert response.results
        assert response.results[0].chunk.content == ODIN
        assert response.search_summary.search_strategy == "fallback"
        scores = [hit.score for hit in response.results]
        assert scores == sorted(scores, reverse=True)

    @pytest.mark.asyncio
    async def test_project_stats_union_is_deduplicated_and_capped(self, engine):
        await engine.add_document("Thor met Loki.", {"projectId": "P2", "characters": ["Thor", "Loki"]})
        await engine.add_document("Loki met Sif.", {"projectId": "P2", "characters": ["loki", "Sif"]})
        await engine.add_document("Sif met Thor.", {"projectId": "P2", "characters": ["Sif", "THOR"]})

        stats = await engine.get_project_stats("P2")

        assert stats.characters == ["Thor", "Loki", "Sif"]
        assert stats.total_chunks == 3
        assert stats.total_documents == 3

    @pytest.mark.asyncio
    async def test_project_stats_characters_capped_at_twenty(self, engine):
        for batch in range(3):
            names = [f"Hero{batch}x{i}" for i in range(10)]
            await engine.add_document(f"Chapter {batch} of the saga.", {"projectId": "P2", "characters": names})

        stats = await engine.get_project_stats("P2")

        assert len(stats.characters) == 20


class TestSearchProperties:
    @pytest.mark.asyncio
    async def test_importance_is_always_bounded(self, engine):
        await engine.add_document(THOR, {"projectId": "P1", "importance": 99})
        await engine.add_document('"Run!" she screamed!!! "Now!!"', {"projectId": "P1"})
        assert all(1.0 <= chunk.importance <= 10.0 for chunk in engine.index.snapshot())

    @pytest.mark.asyncio
    async def test_limit_is_respected(self, engine):
        for i in range(6):
            await engine.add_document(f"Thor fought battle number {i} today.", {"projectId": "P1"})
        response = await engine.intelligent_search("Thor", SearchOptions(project_id="P1", limit=2))
        assert len(response.results) == 2
        assert response.search_summary.total_results == 2

    @pytest.mark.asyncio
    async def test_project_scope_is_respected(self, engine):
        await engine.add_document(THOR, {"projectId": "P1"})
        await engine.add_document("Thor slept in Bilskirnir.", {"projectId": "P2"})
        response = await engine.intelligent_search("Thor", {"projectId": "P1"})
        assert response.results
        assert {hit.chunk.project_id for hit in response.results} == {"P1"}

    @pytest.mark.asyncio
    async def test_filters(self, engine):
        await engine.add_document(THOR, {"projectId": "P1"})
        await engine.add_document('"Thor, wait," Sif said: "not yet."', {"projectId": "P1"})

        dialogue = await engine.intelligent_search(
            "Thor", {"projectId": "P1", "contentTypes": ["dialogue"]}
        )
        assert [hit.chunk.content_type for hit in dialogue.results] == [ContentType.DIALOGUE]

        strict = await engine.intelligent_search("Thor", {"projectId": "P1", "minImportance": 10})
        assert strict.results == []

    @pytest.mark.asyncio
    async def test_blank_query_returns_empty_results(self, engine):
        await engine.add_document(THOR, {"projectId": "P1"})
        response = await engine.intelligent_search("   ", {"projectId": "P1"})
        assert response.results == []
        assert response.search_summary is None

    @pytest.mark.asyncio
    async def test_invalid_options_do_not_raise(self, engine):
        response = await engine.intelligent_search("Thor", {"limit": 0})
        assert response.results == []

    @pytest.mark.asyncio
    async def test_hits_carry_context_and_insights(self, engine):
        await engine.add_document(THOR, {"projectId": "P1", "characters": ["Thor"]})
        await engine.add_document("Thor rested after the war.", {"projectId": "P1", "characters": ["Thor"]})

        response = await engine.intelligent_search("Thor", {"projectId": "P1"})

        hit = response.results[0]
        assert hit.contextual_summary
        assert hit.related_chunks
        assert hit.matched_elements.characters == ["Thor"]
        assert response.project_insights.relevant_characters[0] == "Thor"

    @pytest.mark.asyncio
    async def test_insights_can_be_disabled(self, engine):
        await engine.add_document(THOR, {"projectId": "P1"})
        response = await engine.intelligent_search("Thor", {"projectId": "P1", "includeInsights": False})
        assert response.project_insights is None

    @pytest.mark.asyncio
    async def test_results_are_cached_until_the_project_changes(self, engine):
        await engine.add_document(THOR, {"projectId": "P1"})
        engine.search_index.search = AsyncMock(wraps=engine.search_index.search)

        await engine.intelligent_search("Thor", {"projectId": "P1"})
        await engine.intelligent_search("Thor", {"projectId": "P1"})
        assert engine.search_index.search.await_count == 1

        await engine.add_document("Thor slept.", {"projectId": "P1"})
        response = await engine.intelligent_search("Thor", {"projectId": "P1"})
        assert engine.search_index.search.await_count == 2
        assert len(response.results) == 2

    @pytest.mark.asyncio
    async def test_cached_response_is_a_copy(self, engine):
        await engine.add_document(THOR, {"projectId": "P1"})
        first = await engine.intelligent_search("Thor", {"projectId": "P1"})
        first.results.clear()
        second = await engine.intelligent_search("Thor", {"projectId": "P1"})
        assert second.results

    @pytest.mark.asyncio
    async def test_reranker_blends_into_ranking(self, engine_config):
        engine = RetrievalEngine(engine_config, reranker=SleeperFirstReranker())
        await engine.add_document("Thor Thor Thor fought.", {"projectId": "P1"})
        await engine.add_document("Thor slept.", {"projectId": "P1"})

        response = await engine.intelligent_search("Thor", {"projectId": "P1"})

        assert response.results[0].chunk.content == "Thor slept."

    @pytest.mark.asyncio
    async def test_project_content_fallback(self, engine_config):
        """A project with no matching chunks is searched through its stored content."""
        store = InMemoryProjectStore(
            [ProjectRecord(project_id="P3", title="Vanir", content="Freya weeps golden tears.")]
        )
        engine = RetrievalEngine(engine_config, project_store=store)

        response = await engine.intelligent_search("Freya", {"projectId": "P3"})

        assert len(response.results) == 1
        chunk = response.results[0].chunk
        assert chunk.chunk_id == "project:P3"
        assert chunk.content_type == ContentType.PROJECT
        assert chunk.importance == 8.0
        assert chunk.semantic_tags == ["database", "project-content"]

    @pytest.mark.asyncio
    async def test_project_content_unused_when_project_has_chunks(self, engine_config):
        store = InMemoryProjectStore(
            [ProjectRecord(project_id="P3", title="Vanir", content="Freya weeps golden tears.")]
        )
        engine = RetrievalEngine(engine_config, project_store=store)
        await engine.add_document(THOR, {"projectId": "P3"})

        response = await engine.intelligent_search("Freya", {"projectId": "P3"})

        assert all(hit.chunk.chunk_id != "project:P3" for hit in response.results)

    @pytest.mark.asyncio
    async def test_malformed_embedding_response_yields_empty_response(
        self, semantic_engine, switchable_embedder
    ):
        await semantic_engine.add_document(THOR, {"projectId": "P1"})
        switchable_embedder.error = MalformedResponseError("no data field")

        response = await semantic_engine.intelligent_search("Thor", {"projectId": "P1"})

        assert response.results == []
        assert response.search_summary is None


class TestIngestion:
    @pytest.mark.asyncio
    async def test_blank_document(self, engine):
        assert await engine.add_document("  \n ", {"projectId": "P1"}) == []

    @pytest.mark.asyncio
    async def test_invalid_metadata_returns_empty(self, engine):
        assert await engine.add_document(THOR, {"createdAt": "yesterday", "importance": "x"}) == []

    @pytest.mark.asyncio
    async def test_metadata_overrides(self, engine):
        [chunk_id] = await engine.add_document(
            THOR,
            {
                "projectId": "P1",
                "userId": "u1",
                "type": "notes",
                "importance": 9,
                "title": "Chapter 1",
                "themes": ["courage"],
            },
        )
        chunk = engine.index.get(chunk_id)
        assert chunk.content_type == ContentType.NOTES
        assert chunk.importance == 9.0
        assert chunk.user_id == "u1"
        assert chunk.themes[0] == "courage"
        assert chunk.extra["title"] == "Chapter 1"

    @pytest.mark.asyncio
    async def test_long_document_is_chunked(self, engine):
        paragraph = "Thor walked through the snow toward the great hall of the giants. " * 6
        text = "\n\n".join([paragraph.strip() + f" Stage {i}." for i in range(8)])
        ids = await engine.add_document(text, {"projectId": "P1"})

        chunks = [engine.index.get(i) for i in ids]
        assert len(chunks) > 1
        assert [c.chunk_index for c in chunks] == list(range(len(chunks)))
        assert len({c.document_id for c in chunks}) == 1
        assert chunks[1].previous_context is not None

    @pytest.mark.asyncio
    async def test_embedding_failure_still_indexes(self, semantic_engine, switchable_embedder):
        switchable_embedder.error = RateLimitedError("quota")
        ids = await semantic_engine.add_document(THOR, {"projectId": "P1"})
        assert ids
        assert len(semantic_engine.index.vectors) == 0

        switchable_embedder.error = None
        response = await semantic_engine.intelligent_search("Thor", {"projectId": "P1"})
        assert response.search_summary.search_strategy == "semantic"
        assert response.results
        assert len(semantic_engine.index.vectors) == 1

    @pytest.mark.asyncio
    async def test_chunk_indexed_during_outage_is_found_semantically(
        self, semantic_engine, switchable_embedder
    ):
        await semantic_engine.add_document(
            "Loki plotted beneath the roots of Yggdrasil with a serpent.", {"projectId": "P1"}
        )
        switchable_embedder.error = RateLimitedError("quota")
        await semantic_engine.add_document(THOR, {"projectId": "P1"})
        switchable_embedder.error = None

        response = await semantic_engine.intelligent_search(
            "Thor against the frost giants", {"projectId": "P1"}
        )

        assert response.search_summary.search_strategy == "semantic"
        assert response.results[0].chunk.content == THOR

    @pytest.mark.asyncio
    async def test_snapshot_failure_keeps_memory_state(self, engine_config):
        persistence = MagicMock()
        persistence.save = AsyncMock(side_effect=PersistenceError("disk full"))
        engine = RetrievalEngine(engine_config, persistence=persistence)

        ids = await engine.add_document(THOR, {"projectId": "P1"})

        assert ids
        assert (await engine.intelligent_search("Thor", {"projectId": "P1"})).results

    @pytest.mark.asyncio
    async def test_concurrent_ingestion_loses_nothing(self, engine):
        names = ["Thor", "Loki", "Sif", "Odin", "Freya"]
        await asyncio.gather(
            *(
                engine.add_document(f"{name} stood watch on day {i}.", {"projectId": "P1", "characters": [name]})
                for i, name in enumerate(names)
            )
        )
        assert len(engine.index.project_chunks("P1")) == 5
        profile = await engine.sync_project_context("P1")
        assert sorted(profile.characters) == sorted(names)

    @pytest.mark.asyncio
    async def test_ai_extraction(self, snapshot_path):
        config = EngineConfig(
            provider=ProviderConfig(use_ai_extraction=True),
            persistence=PersistenceConfig(path=str(snapshot_path)),
        )
        llm = FakeListLLM(responses=['{"characters": ["Sif"], "themes": ["loyalty"]}'])
        engine = RetrievalEngine(config, llm=llm)

        [chunk_id] = await engine.add_document("Sif guarded the gate.", {"projectId": "P1"})

        chunk = engine.index.get(chunk_id)
        assert chunk.characters == ["Sif"]
        assert chunk.themes == ["loyalty"]


class TestProjects:
    @pytest.mark.asyncio
    async def test_sync_project_context(self, engine):
        await engine.add_document(THOR, {"projectId": "P1", "characters": ["Thor"]})
        profile = await engine.sync_project_context("P1")
        assert profile.project_id == "P1"
        assert "Thor" in profile.characters

    @pytest.mark.asyncio
    async def test_sync_unknown_project_is_none(self, engine):
        assert await engine.sync_project_context("ghost") is None

    @pytest.mark.asyncio
    async def test_stats_for_unknown_project(self, engine):
        stats = await engine.get_project_stats("ghost")
        assert stats.project_id == "ghost"
        assert stats.total_chunks == 0
        assert stats.last_updated is None

    @pytest.mark.asyncio
    async def test_stats_refresh_after_ingest(self, engine):
        await engine.add_document(THOR, {"projectId": "P1"})
        assert (await engine.get_project_stats("P1")).total_chunks == 1
        await engine.add_document("Loki lied to everyone.", {"projectId": "P1"})
        stats = await engine.get_project_stats("P1")
        assert stats.total_chunks == 2
        assert stats.average_importance >= 1.0
        assert stats.total_word_count > 0

    @pytest.mark.asyncio
    async def test_delete_project_documents(self, engine):
        await engine.add_document(THOR, {"projectId": "P1"})
        await engine.add_document("Thor slept.", {"projectId": "P1"})
        await engine.add_document("Thor again.", {"projectId": "P2"})

        assert await engine.delete_project_documents("P1") == 2

        assert (await engine.intelligent_search("Thor", {"projectId": "P1"})).results == []
        assert await engine.sync_project_context("P1") is None
        assert (await engine.get_project_stats("P1")).total_chunks == 0
        assert (await engine.intelligent_search("Thor", {"projectId": "P2"})).results
        assert await engine.delete_project_documents("P1") == 0

    @pytest.mark.asyncio
    async def test_engine_stats(self, engine):
        await engine.add_document(THOR, {"projectId": "P1", "characters": ["Thor"]})
        await engine.add_document("Thor slept.", {"projectId": "P2", "characters": ["Thor"]})

        stats = engine.get_stats()

        assert stats.total_chunks == 2
        assert stats.total_projects == 2
        assert stats.top_characters[0] == "Thor"
        assert "hit_rate" in stats.cache


class TestPersistenceRoundTrip:
    @pytest.mark.asyncio
    async def test_reload_restores_chunks_and_profiles(self, engine_config):
        first = RetrievalEngine(engine_config)
        await first.add_document(THOR, {"projectId": "P1", "characters": ["Thor"]})
        await first.add_document(ODIN, {"projectId": "P2"})

        async with RetrievalEngine(engine_config) as second:
            def documents(engine):
                return {c.chunk_id: c.to_document() for c in engine.index.snapshot()}

            assert documents(second) == documents(first)
            assert {
                pid: p.model_dump(mode="json") for pid, p in second.profiles.all().items()
            } == {pid: p.model_dump(mode="json") for pid, p in first.profiles.all().items()}
            assert (await second.intelligent_search("Thor", {"projectId": "P1"})).results

    @pytest.mark.asyncio
    async def test_reload_re_embeds_chunks(self, engine_config, switchable_embedder):
        await RetrievalEngine(engine_config).add_document(THOR, {"projectId": "P1"})

        async with RetrievalEngine(engine_config, embedder=switchable_embedder) as engine:
            assert len(engine.index.vectors) == 1
            response = await engine.intelligent_search("frost giants", {"projectId": "P1"})
            assert response.search_summary.search_strategy == "semantic"

    @pytest.mark.asyncio
    async def test_corrupt_snapshot_starts_empty(self, engine_config, snapshot_path):
        snapshot_path.write_text("{definitely not json", encoding="utf-8")
        async with RetrievalEngine(engine_config) as engine:
            assert len(engine.index) == 0
            assert await engine.add_document(THOR, {"projectId": "P1"})

    @pytest.mark.asyncio
    async def test_close_stops_maintenance(self, engine_config):
        engine = RetrievalEngine(engine_config)
        await engine.start()
        task = engine._optimize_task
        assert task is not None
        await engine.close()
        assert task.cancelled()
        assert engine._optimize_task is None
