from __future__ import annotations

import os
from dataclasses import replace

from langchain_core.embeddings.embeddings import Embeddings
from langchain_core.language_models.base import BaseLanguageModel
from langchain_openai import ChatOpenAI, OpenAIEmbeddings

from ..configs import EngineConfig
from ..rerankers.base import BaseReranker
from ._internal.persistence import Persistence
from .engine import RetrievalEngine
from .protocols import Clock, Embedder, ProjectStore

DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"
DEFAULT_LLM_MODEL = "gpt-4o-mini"


class EngineBuilder:
    """Fluent builder for configuring RetrievalEngine without a long constructor signature."""

    def __init__(self, config: EngineConfig | None = None) -> None:
        self._config = config or EngineConfig()
        self._embeddings: Embeddings | None = None
        self._embedder: Embedder | None = None
        self._llm: BaseLanguageModel | None = None
        self._project_store: ProjectStore | None = None
        self._reranker: BaseReranker | None = None
        self._persistence: Persistence | None = None
        self._clock: Clock | None = None
        self._use_openai_defaults = False

    @classmethod
    def from_env(cls) -> EngineBuilder:
        """Config from LOREWEAVE_* variables, OpenAI collaborators when OPENAI_API_KEY is set."""
        return cls(EngineConfig.from_env()).with_openai_defaults()

    @classmethod
    def offline(cls, config: EngineConfig | None = None) -> EngineBuilder:
        """No collaborators: lexical search and rule-based enrichment only."""
        return cls(config)

    def with_config(self, config: EngineConfig) -> EngineBuilder:
        self._config = config
        return self

    def with_embeddings(self, embeddings: Embeddings | None) -> EngineBuilder:
        self._embeddings = embeddings
        return self

    def with_embedder(self, embedder: Embedder | None) -> EngineBuilder:
        self._embedder = embedder
        return self

    def with_llm(self, llm: BaseLanguageModel | None) -> EngineBuilder:
        self._llm = llm
        return self

    def with_project_store(self, store: ProjectStore | None) -> EngineBuilder:
        self._project_store = store
        return self

    def with_reranker(self, reranker: BaseReranker | None) -> EngineBuilder:
        self._reranker = reranker
        return self

    def with_persistence(self, persistence: Persistence | None) -> EngineBuilder:
        self._persistence = persistence
        return self

    def with_snapshot_path(self, path: str) -> EngineBuilder:
        self._config = replace(
            self._config, persistence=replace(self._config.persistence, path=path)
        )
        return self

    def without_persistence(self) -> EngineBuilder:
        self._config = replace(
            self._config, persistence=replace(self._config.persistence, enabled=False)
        )
        return self

    def with_clock(self, clock: Clock | None) -> EngineBuilder:
        self._clock = clock
        return self

    def enable_ai_extraction(self, enabled: bool = True) -> EngineBuilder:
        self._config = replace(
            self._config, provider=replace(self._config.provider, use_ai_extraction=enabled)
        )
        return self

    def enable_ai_rerank(self, enabled: bool = True) -> EngineBuilder:
        self._config = replace(self._config, search=replace(self._config.search, ai_rerank=enabled))
        return self

    def with_search_limit(self, limit: int) -> EngineBuilder:
        self._config = replace(
            self._config, search=replace(self._config.search, default_limit=limit)
        )
        return self

    def with_openai_defaults(self, enabled: bool = True) -> EngineBuilder:
        self._use_openai_defaults = enabled
        return self

    def _openai_collaborators(self) -> tuple[Embeddings | None, BaseLanguageModel | None]:
        if not os.getenv("OPENAI_API_KEY"):
            return None, None
        provider = self._config.provider
        embeddings = OpenAIEmbeddings(
            model=provider.embedding_model or DEFAULT_EMBEDDING_MODEL,
            base_url=provider.base_url,
        )
        llm = ChatOpenAI(
            model=provider.llm_model or DEFAULT_LLM_MODEL,
            temperature=0,
            base_url=provider.base_url,
            timeout=provider.timeout_seconds,
        )
        return embeddings, llm

    def build(self) -> RetrievalEngine:
        embeddings, llm = self._embeddings, self._llm
        if self._use_openai_defaults and embeddings is None and llm is None and self._embedder is None:
            embeddings, llm = self._openai_collaborators()
        return RetrievalEngine(
            self._config,
            embeddings=embeddings,
            llm=llm,
            project_store=self._project_store,
            reranker=self._reranker,
            embedder=self._embedder,
            persistence=self._persistence,
            clock=self._clock,
        )
