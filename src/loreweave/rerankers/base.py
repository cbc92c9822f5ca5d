"""Relevance graders applied after contextual ranking."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod

from ..core.models import Chunk


class BaseReranker(ABC):
    """Grades each candidate chunk against the query.

    Subclasses implement `score`; `rerank` grades every candidate
    concurrently and orders them by grade. Grades are in [0, 1].
    """

    @abstractmethod
    async def score(self, query: str, chunk: Chunk) -> float:
        """Relevance of one chunk to the query, between 0 and 1."""

    async def rerank(
        self, query: str, candidates: list[Chunk], top_k: int | None = None
    ) -> list[tuple[Chunk, float]]:
        """
        Grade and reorder candidates.

        Args:
            query: The search query.
            candidates: Chunks to grade, usually the head of the contextual ranking.
            top_k: Optional cap on the number of graded chunks returned.

        Returns:
            (chunk, grade) pairs, highest grade first. Equal grades keep the
            incoming order.
        """
        if not candidates:
            return []
        grades = await asyncio.gather(*(self.score(query, chunk) for chunk in candidates))
        graded = sorted(zip(candidates, grades, strict=True), key=lambda item: item[1], reverse=True)
        return graded if top_k is None else graded[:top_k]
