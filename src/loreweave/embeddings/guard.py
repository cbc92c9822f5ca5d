"""Timeout, classification and cooldown for collaborator calls."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from typing import TypeVar

from langchain_core.embeddings.embeddings import Embeddings

from ..errors import (
    MalformedResponseError,
    RateLimitedError,
    UnavailableError,
    classify_provider_error,
)
from ..store.logging import log_context

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ProviderGuard:
    """
    Wraps every embedding / model call.

    * bounds the call with `asyncio.wait_for`
    * maps provider exceptions onto the error taxonomy
    * after a rate limit, fails fast with UnavailableError until the cooldown ends
    * optionally enforces a local calls-per-minute budget
    """

    def __init__(
        self,
        timeout_seconds: float = 20.0,
        cooldown_seconds: float = 300.0,
        max_calls_per_minute: int = 0,
        clock: Callable[[], float] | None = None,
    ):
        self.timeout_seconds = timeout_seconds
        self.cooldown_seconds = cooldown_seconds
        self.max_calls_per_minute = max_calls_per_minute
        self._clock = clock or time.monotonic
        self._cooldown_until = 0.0
        self._recent_calls: deque[float] = deque()

    @property
    def cooling_down(self) -> bool:
        return self._clock() < self._cooldown_until

    def remaining_cooldown(self) -> float:
        return max(0.0, self._cooldown_until - self._clock())

    def reset(self) -> None:
        self._cooldown_until = 0.0
        self._recent_calls.clear()

    async def call(self, provider: str, factory: Callable[[], Awaitable[T]]) -> T:
        now = self._clock()
        if now < self._cooldown_until:
            raise UnavailableError(
                f"Provider cooling down for {self._cooldown_until - now:.0f}s", provider
            )
        self._consume_budget(provider, now)

        try:
            return await asyncio.wait_for(factory(), timeout=self.timeout_seconds)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            classified = classify_provider_error(e, provider)
            if isinstance(classified, RateLimitedError):
                self._cooldown_until = self._clock() + self.cooldown_seconds
                logger.warning(
                    "provider rate limited, cooling down",
                    extra=log_context(
                        "provider_guard", provider=provider, cooldown_s=self.cooldown_seconds
                    ),
                )
            if classified is e:
                raise
            raise classified from e

    def _consume_budget(self, provider: str, now: float) -> None:
        if self.max_calls_per_minute <= 0:
            return
        while self._recent_calls and now - self._recent_calls[0] >= 60.0:
            self._recent_calls.popleft()
        if len(self._recent_calls) >= self.max_calls_per_minute:
            raise RateLimitedError("Local call budget exhausted", provider)
        self._recent_calls.append(now)


class GuardedEmbedder:
    """Embedder protocol implementation over a LangChain `Embeddings`."""

    def __init__(self, embeddings: Embeddings | None, guard: ProviderGuard | None = None):
        self.embeddings = embeddings
        self.guard = guard or ProviderGuard()

    @property
    def available(self) -> bool:
        return self.embeddings is not None

    async def embed(self, text: str) -> list[float]:
        embeddings = self._require()
        vector = await self.guard.call("embed", lambda: embeddings.aembed_query(text))
        if not vector:
            raise MalformedResponseError("Empty embedding returned", "embed")
        return list(vector)

    async def embed_many(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        embeddings = self._require()
        vectors = await self.guard.call("embed", lambda: embeddings.aembed_documents(texts))
        if len(vectors) != len(texts):
            raise MalformedResponseError(
                f"Expected {len(texts)} embeddings, got {len(vectors)}", "embed"
            )
        return [list(vector) for vector in vectors]

    def _require(self) -> Embeddings:
        if self.embeddings is None:
            raise UnavailableError("No embedding backend configured", "embed")
        return self.embeddings
