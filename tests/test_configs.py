"""Tests for engine configuration."""

from dataclasses import FrozenInstanceError, replace

import pytest

from loreweave.configs import EngineConfig, IngestionConfig, SearchConfig
from loreweave.errors import ConfigurationError


class TestDefaults:
    def test_default_values(self):
        config = EngineConfig()
        assert config.search.default_limit == 5
        assert config.search.ai_rerank is False
        assert config.cache.analysis_ttl == 1800.0
        assert config.cache.search_ttl == 900.0
        assert config.ingestion.chunk_size == 1000
        assert config.ingestion.chunk_overlap == 200
        assert config.ingestion.duplicate_threshold == 0.95
        assert config.persistence.keep_backups == 10

    def test_configs_are_frozen(self):
        config = EngineConfig()
        with pytest.raises(FrozenInstanceError):
            config.search = SearchConfig(default_limit=1)  # type: ignore[misc]


class TestValidation:
    """Invalid combinations are rejected at construction time."""

    def test_overlap_must_be_smaller_than_chunk_size(self):
        with pytest.raises(ConfigurationError):
            EngineConfig(ingestion=IngestionConfig(chunk_size=100, chunk_overlap=100))

    def test_limit_must_be_positive(self):
        with pytest.raises(ConfigurationError):
            EngineConfig(search=SearchConfig(default_limit=0))

    def test_replace_revalidates(self):
        config = EngineConfig()
        with pytest.raises(ConfigurationError):
            replace(config, ingestion=replace(config.ingestion, duplicate_threshold=1.5))


class TestFromEnv:
    def test_empty_environment_uses_defaults(self):
        assert EngineConfig.from_env({}) == EngineConfig()

    def test_reads_variables(self):
        config = EngineConfig.from_env(
            {
                "LOREWEAVE_SEARCH_LIMIT": "3",
                "LOREWEAVE_AI_RERANK": "yes",
                "LOREWEAVE_PERSISTENCE": "off",
                "LOREWEAVE_SNAPSHOT_PATH": "/tmp/x.json",
                "LOREWEAVE_PROVIDER_TIMEOUT": "2.5",
                "OPENAI_MODEL": "gpt-test",
            }
        )
        assert config.search.default_limit == 3
        assert config.search.ai_rerank is True
        assert config.persistence.enabled is False
        assert config.persistence.path == "/tmp/x.json"
        assert config.provider.timeout_seconds == 2.5
        assert config.provider.llm_model == "gpt-test"

    def test_loreweave_model_wins_over_openai(self):
        config = EngineConfig.from_env(
            {"LOREWEAVE_LLM_MODEL": "mine", "OPENAI_MODEL": "theirs"}
        )
        assert config.provider.llm_model == "mine"

    @pytest.mark.parametrize(
        "name,value",
        [
            ("LOREWEAVE_SEARCH_LIMIT", "many"),
            ("LOREWEAVE_PROVIDER_TIMEOUT", "soon"),
            ("LOREWEAVE_AI_RERANK", "maybe"),
        ],
    )
    def test_bad_values_raise(self, name, value):
        with pytest.raises(ConfigurationError):
            EngineConfig.from_env({name: value})
