"""Tests for the chunk index, vector index and dual-mode search."""

from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from loreweave.core._internal.indexing import (
    ChunkIndex,
    DualModeIndex,
    LexicalScorer,
    VectorIndex,
    jaccard,
    merge_chunk_metadata,
    query_terms,
    token_set,
    tokenize,
)
from loreweave.errors import (
    MalformedResponseError,
    ProviderTimeoutError,
    RateLimitedError,
    UnavailableError,
)

THOR = "Thor wielded Mjolnir against the frost giants."


class TestTokenizing:
    def test_tokenize(self):
        assert tokenize("Thor's hammer, MJOLNIR!") == ["thor", "s", "hammer", "mjolnir"]
        assert tokenize("") == []

    def test_query_terms_drop_short_and_repeated(self):
        assert query_terms("The god of war and the god") == ["the", "god", "war", "and"]

    def test_jaccard(self):
        assert jaccard(frozenset(), frozenset()) == 1.0
        assert jaccard(token_set("a b"), token_set("b c")) == pytest.approx(1 / 3)


class TestVectorIndex:
    def test_nearest_first(self):
        index = VectorIndex()
        index.add("east", [1.0, 0.0])
        index.add("north", [0.0, 1.0])
        results = index.search([1.0, 0.1], top_k=2)
        assert [chunk_id for chunk_id, _ in results] == ["east", "north"]
        assert results[0][1] == pytest.approx(0.995, abs=1e-3)

    def test_zero_vectors_are_ignored(self):
        index = VectorIndex()
        index.add("zero", [0.0, 0.0])
        assert len(index) == 0
        assert index.search([0.0, 0.0], top_k=1) == []

    def test_allowed_restricts_results(self):
        index = VectorIndex()
        index.add("a", [1.0, 0.0])
        index.add("b", [0.9, 0.1])
        assert [i for i, _ in index.search([1.0, 0.0], 5, allowed={"b"})] == ["b"]

    def test_mismatched_dimensions_are_skipped(self):
        index = VectorIndex()
        index.add("flat", [1.0, 0.0])
        index.add("deep", [1.0, 0.0, 0.0])
        assert [i for i, _ in index.search([1.0, 0.0], 5)] == ["flat"]

    def test_remove(self):
        index = VectorIndex()
        index.add("a", [1.0, 0.0])
        index.remove(["a", "missing"])
        assert "a" not in index


class TestLexicalScorer:
    """Exact match +10, +3 per term occurrence, entity bonuses, then importance."""

    def test_exact_match_and_term(self, make_chunk):
        chunk = make_chunk(THOR, importance=5.0)
        assert LexicalScorer().score("Thor", chunk) == 18.0

    def test_character_bonus(self, make_chunk):
        chunk = make_chunk(THOR, importance=5.0, characters=["Thor"])
        assert LexicalScorer().score("Thor", chunk) == 23.0

    def test_theme_and_tag_bonus(self, make_chunk):
        chunk = make_chunk("Odin ruled.", importance=5.0, themes=["mythology"], semantic_tags=["mythology"])
        # no text match: theme 4 + tag 2 + importance
        assert LexicalScorer().score("mythology", chunk) == 11.0

    def test_importance_is_always_added(self, make_chunk):
        assert LexicalScorer().score("dragons", make_chunk(THOR, importance=9.0)) == 9.0

    def test_blank_query(self, make_chunk):
        assert LexicalScorer().score("  ", make_chunk(THOR)) == 0.0

    def test_search_orders_by_score(self, make_chunk):
        weak = make_chunk("Thor slept.", importance=1.0)
        strong = make_chunk("Thor and Thor again.", importance=1.0)
        miss = make_chunk("Loki lied.", importance=10.0)
        results = LexicalScorer().search("thor", [weak, miss, strong])
        # strong: 10 + 2*3 + 1, weak: 10 + 3 + 1, miss: importance only
        assert [score for _, score in results] == [17.0, 14.0, 10.0]
        assert [chunk for chunk, _ in results] == [strong, weak, miss]

    def test_search_excludes_everything_for_blank_query(self, make_chunk):
        assert LexicalScorer().search("  ", [make_chunk(THOR)]) == []


class TestChunkIndex:
    @pytest.mark.asyncio
    async def test_add_and_partition(self, make_chunk):
        index = ChunkIndex()
        first = make_chunk("Thor slept.", project_id="P1")
        second = make_chunk("Loki lied.", project_id="P2")
        assert await index.add(first) == (first.chunk_id, True)
        await index.add(second)

        assert len(index) == 2
        assert index.project_chunks("P1") == [first]
        assert sorted(index.project_ids()) == ["P1", "P2"]
        assert index.get(second.chunk_id) is second

    @pytest.mark.asyncio
    async def test_near_duplicate_is_merged(self, make_chunk):
        """A near-identical chunk in the same project merges into the existing one."""
        index = ChunkIndex()
        original = make_chunk(THOR, project_id="P1", themes=["duty"], importance=4.0)
        await index.add(original)
        copy = make_chunk(THOR, project_id="P1", themes=["war"], importance=7.0)

        chunk_id, inserted = await index.add(copy)

        assert (chunk_id, inserted) == (original.chunk_id, False)
        assert len(index) == 1
        merged = index.get(original.chunk_id)
        assert merged.themes == ["duty", "war"]
        assert merged.importance == 7.0
        assert merged.updated_at is not None
        # the object handed out earlier is untouched
        assert original.themes == ["duty"]

    @pytest.mark.asyncio
    async def test_same_text_in_other_project_is_kept(self, make_chunk):
        index = ChunkIndex()
        await index.add(make_chunk(THOR, project_id="P1"))
        _, inserted = await index.add(make_chunk(THOR, project_id="P2"))
        assert inserted

    @pytest.mark.asyncio
    async def test_snapshot_is_stable_tuple(self, make_chunk):
        index = ChunkIndex()
        await index.add(make_chunk("one", project_id="P1"))
        view = index.snapshot()
        await index.add(make_chunk("two", project_id="P1"))
        assert len(view) == 1
        assert len(index.snapshot()) == 2

    @pytest.mark.asyncio
    async def test_remove_project(self, make_chunk):
        index = ChunkIndex()
        keep = make_chunk("keep", project_id="P2")
        drop = make_chunk("drop", project_id="P1")
        await index.add(drop, [1.0, 0.0])
        await index.add(keep, [0.0, 1.0])

        removed = await index.remove_project("P1")

        assert removed == [drop]
        assert index.snapshot() == (keep,)
        assert drop.chunk_id not in index.vectors
        assert await index.remove_project("P1") == []

    @pytest.mark.asyncio
    async def test_replace_all_uses_chunk_embeddings(self, make_chunk):
        index = ChunkIndex()
        await index.add(make_chunk("old"))
        fresh = make_chunk("new", project_id="P1", embedding=[1.0, 0.0])
        await index.replace_all([fresh])
        assert index.snapshot() == (fresh,)
        assert fresh.chunk_id in index.vectors

    @pytest.mark.asyncio
    async def test_set_vector_ignores_unknown_chunk(self):
        index = ChunkIndex()
        await index.set_vector("ghost", [1.0])
        assert len(index.vectors) == 0

    def test_merge_keeps_first_user(self, make_chunk):
        merged = merge_chunk_metadata(make_chunk(user_id="u1"), make_chunk(user_id="u2"))
        assert merged.user_id == "u1"


class TestDualModeIndex:
    """Per-request choice between semantic and lexical search."""

    @pytest_asyncio.fixture
    async def populated(self, make_chunk, switchable_embedder):
        chunks = ChunkIndex()
        thor = make_chunk(THOR, project_id="P1", importance=5.0)
        loki = make_chunk("Loki lied to the gods.", project_id="P1", importance=5.0)
        for chunk in (thor, loki):
            await chunks.add(chunk, await switchable_embedder.embed(chunk.content))
        return chunks, thor, loki

    @pytest.mark.asyncio
    async def test_semantic_when_healthy(self, populated, switchable_embedder):
        chunks, thor, loki = populated
        index = DualModeIndex(chunks, switchable_embedder)
        hits, strategy = await index.search("frost giants", [thor, loki], top_n=5)
        assert strategy == "semantic"
        assert hits[0][0] is thor

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [RateLimitedError("quota"), ProviderTimeoutError("slow"), UnavailableError("down")],
    )
    async def test_fallback_on_provider_error(self, populated, switchable_embedder, error):
        chunks, thor, loki = populated
        switchable_embedder.error = error
        index = DualModeIndex(chunks, switchable_embedder)
        hits, strategy = await index.search("Thor", [thor, loki], top_n=5)
        assert strategy == "fallback"
        assert hits[0][0] is thor
        assert hits[0][1] > hits[1][1]

    @pytest.mark.asyncio
    async def test_other_provider_errors_propagate(self, populated, switchable_embedder):
        chunks, thor, loki = populated
        switchable_embedder.error = MalformedResponseError("bad")
        index = DualModeIndex(chunks, switchable_embedder)
        with pytest.raises(MalformedResponseError):
            await index.search("Thor", [thor, loki], top_n=5)

    @pytest.mark.asyncio
    async def test_fallback_without_embedder(self, populated):
        chunks, thor, loki = populated
        hits, strategy = await DualModeIndex(chunks).search("Loki", [thor, loki], top_n=5)
        assert strategy == "fallback"
        assert hits[0][0] is loki

    @pytest.mark.asyncio
    async def test_fallback_when_semantic_finds_nothing(self, populated, switchable_embedder):
        chunks, thor, loki = populated
        index = DualModeIndex(chunks, switchable_embedder)
        hits, strategy = await index.search("zzz", [thor, loki], top_n=5)
        assert strategy == "fallback"
        # nothing matches, so only importance is left
        assert {chunk.chunk_id for chunk, _ in hits} == {thor.chunk_id, loki.chunk_id}
        assert [score for _, score in hits] == [5.0, 5.0]

    @pytest.mark.asyncio
    async def test_vectorless_chunk_is_embedded_on_search(self, make_chunk, switchable_embedder):
        chunks = ChunkIndex()
        thor = make_chunk(THOR, project_id="P1")
        loki = make_chunk("Loki lied to the gods.", project_id="P1")
        await chunks.add(thor, await switchable_embedder.embed(thor.content))
        await chunks.add(loki)
        index = DualModeIndex(chunks, switchable_embedder, embed_batch_size=1)

        hits, strategy = await index.search("Loki lied", [thor, loki], top_n=5)

        assert strategy == "semantic"
        assert hits[0][0] is loki
        assert loki.chunk_id in chunks.vectors
        assert await index.backfill([thor, loki]) == 0

    @pytest.mark.asyncio
    async def test_backfill_failure_falls_back(self, make_chunk, switchable_embedder):
        chunks = ChunkIndex()
        thor = make_chunk(THOR, project_id="P1")
        await chunks.add(thor)
        switchable_embedder.embed_many = AsyncMock(side_effect=RateLimitedError("quota"))
        index = DualModeIndex(chunks, switchable_embedder)

        hits, strategy = await index.search("Thor", [thor], top_n=5)

        assert strategy == "fallback"
        assert hits[0][0] is thor
        assert thor.chunk_id not in chunks.vectors
