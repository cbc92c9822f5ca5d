"""LLM relevance reranker."""

from __future__ import annotations

import asyncio
import logging

from langchain_core.language_models.base import BaseLanguageModel
from pydantic import ValidationError

from ..analysis.llm_extractor import LLMChainMixin
from ..analysis.models import RelevanceScore
from ..core.models import Chunk
from ..embeddings.guard import ProviderGuard
from ..errors import ProviderError
from .base import BaseReranker

logger = logging.getLogger(__name__)

NEUTRAL_RELEVANCE = 0.5
EXCERPT_CHARS = 1200


class LLMRelevanceReranker(LLMChainMixin, BaseReranker):
    """
    Asks a chat model to grade each candidate between 0 and 1.

    A candidate whose grading fails for any reason gets the neutral score
    0.5, so one bad reply never reorders the rest of the list on its own.
    Grading concurrency is capped by a semaphore.
    """

    def __init__(
        self,
        llm: BaseLanguageModel,
        guard: ProviderGuard | None = None,
        max_concurrency: int = 4,
    ):
        self.llm = llm
        self.guard = guard or ProviderGuard()
        self.chain = self._create_chain(self._get_template(), ["query", "content"])
        self._semaphore = asyncio.Semaphore(max_concurrency)

    def _get_template(self) -> str:
        return """
        Rate how relevant the passage is to the search query of a writer
        looking through their own project.
        Answer ONLY with JSON: {{"score": <number between 0 and 1>}}

        Query: {query}

        Passage:
        {content}
        """.strip()

    async def score(self, query: str, chunk: Chunk) -> float:
        async with self._semaphore:
            try:
                payload, _ = await self._invoke_json(
                    "rerank",
                    self.chain,
                    {"query": query, "content": chunk.content[:EXCERPT_CHARS]},
                )
                return RelevanceScore.model_validate(payload).score
            except (ProviderError, ValidationError) as e:
                logger.debug("relevance grading failed for %s: %s", chunk.chunk_id, e)
                return NEUTRAL_RELEVANCE
            except Exception:
                logger.exception("unexpected relevance grading error for %s", chunk.chunk_id)
                return NEUTRAL_RELEVANCE
