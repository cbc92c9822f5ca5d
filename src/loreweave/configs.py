"""
Configuration for the retrieval engine.

Each concern gets a small frozen dataclass; EngineConfig bundles them and
can be populated from LOREWEAVE_* / OPENAI_* environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from .errors import ConfigurationError


@dataclass(frozen=True)
class CacheConfig:
    default_ttl: float = 600.0
    analysis_ttl: float = 1800.0
    fallback_analysis_ttl: float = 900.0
    profile_ttl: float = 1800.0
    project_ttl: float = 900.0
    search_ttl: float = 900.0
    embedding_ttl: float = 3600.0
    embedding_cache_size: int = 2048
    max_keys: int = 1000
    evict_fraction: float = 0.1
    counter_reset: int = 10000
    optimize_interval: float = 600.0


@dataclass(frozen=True)
class SearchConfig:
    default_limit: int = 5
    overfetch_factor: int = 6
    min_candidates: int = 30
    default_min_importance: float = 1.0
    include_context: bool = True
    analyze_queries: bool = True
    ai_rerank: bool = False


@dataclass(frozen=True)
class IngestionConfig:
    chunk_size: int = 1000
    chunk_overlap: int = 200
    duplicate_threshold: float = 0.95
    related_threshold: float = 0.3
    max_related: int = 3
    embed_batch_size: int = 64


@dataclass(frozen=True)
class ProviderConfig:
    timeout_seconds: float = 20.0
    cooldown_seconds: float = 300.0
    max_calls_per_minute: int = 0
    embedding_model: str | None = None
    llm_model: str | None = None
    base_url: str | None = None
    use_ai_extraction: bool = False


@dataclass(frozen=True)
class PersistenceConfig:
    path: str = "data/loreweave_snapshot.json"
    enabled: bool = True
    keep_backups: int = 10


@dataclass(frozen=True)
class EngineConfig:
    cache: CacheConfig = field(default_factory=CacheConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    ingestion: IngestionConfig = field(default_factory=IngestionConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)

    def __post_init__(self) -> None:
        validate_config(self)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> EngineConfig:
        """Build a config from environment variables, falling back to defaults."""
        env = os.environ if environ is None else environ

        provider = ProviderConfig(
            timeout_seconds=_float(env, "LOREWEAVE_PROVIDER_TIMEOUT", 20.0),
            cooldown_seconds=_float(env, "LOREWEAVE_PROVIDER_COOLDOWN", 300.0),
            max_calls_per_minute=_int(env, "LOREWEAVE_MAX_CALLS_PER_MINUTE", 0),
            embedding_model=env.get("LOREWEAVE_EMBEDDING_MODEL")
            or env.get("OPENAI_EMBEDDING_MODEL"),
            llm_model=env.get("LOREWEAVE_LLM_MODEL") or env.get("OPENAI_MODEL"),
            base_url=env.get("OPENAI_BASE_URL"),
            use_ai_extraction=_bool(env, "LOREWEAVE_AI_EXTRACTION", False),
        )
        search = SearchConfig(
            default_limit=_int(env, "LOREWEAVE_SEARCH_LIMIT", 5),
            ai_rerank=_bool(env, "LOREWEAVE_AI_RERANK", False),
            analyze_queries=_bool(env, "LOREWEAVE_ANALYZE_QUERIES", True),
        )
        persistence = PersistenceConfig(
            path=env.get("LOREWEAVE_SNAPSHOT_PATH", PersistenceConfig.path),
            enabled=_bool(env, "LOREWEAVE_PERSISTENCE", True),
            keep_backups=_int(env, "LOREWEAVE_KEEP_BACKUPS", 10),
        )
        return cls(provider=provider, search=search, persistence=persistence)


def validate_config(config: EngineConfig) -> None:
    if config.search.default_limit < 1:
        raise ConfigurationError("search.default_limit must be >= 1")
    if config.search.overfetch_factor < 1:
        raise ConfigurationError("search.overfetch_factor must be >= 1")
    if config.ingestion.chunk_overlap >= config.ingestion.chunk_size:
        raise ConfigurationError("ingestion.chunk_overlap must be smaller than chunk_size")
    if not 0.0 < config.ingestion.duplicate_threshold <= 1.0:
        raise ConfigurationError("ingestion.duplicate_threshold must be in (0, 1]")
    if not 0.0 < config.cache.evict_fraction <= 1.0:
        raise ConfigurationError("cache.evict_fraction must be in (0, 1]")
    if config.provider.timeout_seconds <= 0:
        raise ConfigurationError("provider.timeout_seconds must be positive")


def _float(env, name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from e


def _int(env, name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e


def _bool(env, name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    lowered = raw.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {raw!r}")
