"""Optional rerankers applied after contextual ranking.

Available backends:
    - LLMRelevanceReranker: grades each candidate with a chat model
"""

from __future__ import annotations

from .base import BaseReranker
from .llm import LLMRelevanceReranker

__all__ = [
    "BaseReranker",
    "LLMRelevanceReranker",
]
