"""Tests for the EngineBuilder fluent API."""

import pytest
from langchain_core.language_models.fake import FakeListLLM

from loreweave.configs import EngineConfig
from loreweave.core.builder import EngineBuilder
from loreweave.core.engine import RetrievalEngine
from loreweave.embeddings.guard import GuardedEmbedder
from loreweave.errors import ConfigurationError
from loreweave.rerankers import BaseReranker, LLMRelevanceReranker
from loreweave.store.projects import InMemoryProjectStore


class ConstantReranker(BaseReranker):
    async def score(self, query, chunk):
        return 1.0


@pytest.fixture
def no_openai_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)


class TestEngineBuilder:
    def test_offline_build(self, engine_config):
        engine = EngineBuilder.offline(engine_config).build()
        assert isinstance(engine, RetrievalEngine)
        assert engine.embedder is None
        assert engine.reranker is None
        assert engine.metadata_extractor is None

    def test_with_embeddings_wraps_in_cache_and_guard(self, engine_config, bag_embeddings):
        engine = EngineBuilder(engine_config).with_embeddings(bag_embeddings).build()
        assert isinstance(engine.embedder, GuardedEmbedder)
        assert engine.cached_embeddings is not None
        assert engine.embedder.guard is engine.embedding_guard

    def test_custom_embedder_is_used_as_is(self, engine_config, switchable_embedder):
        engine = EngineBuilder(engine_config).with_embedder(switchable_embedder).build()
        assert engine.embedder is switchable_embedder
        assert engine.cached_embeddings is None

    def test_ai_features_need_flags(self, engine_config):
        llm = FakeListLLM(responses=["{}"])
        plain = EngineBuilder(engine_config).with_llm(llm).build()
        assert plain.metadata_extractor is None
        assert plain.reranker is None

        enabled = (
            EngineBuilder(engine_config)
            .with_llm(llm)
            .enable_ai_extraction()
            .enable_ai_rerank()
            .build()
        )
        assert enabled.metadata_extractor is not None
        assert enabled.query_analyzer is not None
        assert isinstance(enabled.reranker, LLMRelevanceReranker)

    def test_explicit_reranker_wins(self, engine_config):
        reranker = ConstantReranker()
        engine = (
            EngineBuilder(engine_config)
            .with_llm(FakeListLLM(responses=["{}"]))
            .enable_ai_rerank()
            .with_reranker(reranker)
            .build()
        )
        assert engine.reranker is reranker

    def test_config_setters(self, tmp_path):
        builder = (
            EngineBuilder()
            .with_snapshot_path(str(tmp_path / "s.json"))
            .without_persistence()
            .with_search_limit(3)
        )
        engine = builder.build()
        assert engine.config.persistence.path == str(tmp_path / "s.json")
        assert engine.config.persistence.enabled is False
        assert engine.config.search.default_limit == 3

    def test_invalid_limit(self):
        with pytest.raises(ConfigurationError):
            EngineBuilder().with_search_limit(0)

    def test_project_store(self, engine_config):
        store = InMemoryProjectStore()
        engine = EngineBuilder(engine_config).with_project_store(store).build()
        assert engine.profiles.project_store is store

    def test_from_env_without_key_is_offline(self, monkeypatch, no_openai_key, tmp_path):
        monkeypatch.setenv("LOREWEAVE_SNAPSHOT_PATH", str(tmp_path / "env.json"))
        monkeypatch.setenv("LOREWEAVE_SEARCH_LIMIT", "7")
        engine = EngineBuilder.from_env().build()
        assert engine.embedder is None
        assert engine.config.search.default_limit == 7
        assert engine.config.persistence.path == str(tmp_path / "env.json")

    def test_from_env_with_key_uses_openai(self, monkeypatch, engine_config):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        engine = EngineBuilder(engine_config).with_openai_defaults().build()
        assert isinstance(engine.embedder, GuardedEmbedder)

    def test_explicit_collaborators_skip_openai(self, monkeypatch, engine_config, switchable_embedder):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        engine = (
            EngineBuilder(engine_config)
            .with_openai_defaults()
            .with_embedder(switchable_embedder)
            .build()
        )
        assert engine.embedder is switchable_embedder

    def test_with_config(self, engine_config):
        config = EngineConfig()
        assert EngineBuilder(engine_config).with_config(config).build().config is config
