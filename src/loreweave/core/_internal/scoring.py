from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from ...analysis.models import QueryAnalysis
from ..models import NEUTRAL_IMPORTANCE, Chunk, ContentType, SearchOptions

PROJECT_AFFINITY_BOOST = 1.8
THEME_MATCH_WEIGHT = 0.3
CHARACTER_MATCH_WEIGHT = 0.4
IMPORTANCE_WEIGHT = 0.1
TYPE_ALIGNMENT_BOOST = 1.5

TYPE_QUERY_CUES: dict[ContentType, tuple[str, ...]] = {
    ContentType.CHARACTER: ("character", "characters", "protagonist", "villain", "who"),
    ContentType.PLOT: ("plot", "story", "storyline", "chapter", "happens", "happened"),
    ContentType.SETTING: ("setting", "location", "place", "where", "world"),
    ContentType.THEME: ("theme", "themes", "meaning", "symbolism", "motif"),
    ContentType.DIALOGUE: ("dialogue", "conversation", "said", "says", "quote"),
    ContentType.NOTES: ("note", "notes", "todo", "reminder"),
}


def fuzzy_overlap(values: Iterable[str], wanted: Iterable[str]) -> bool:
    """True when any wanted term is a substring of a value or vice versa (case-insensitive)."""
    lowered = [v.lower() for v in values if v]
    for term in wanted:
        term_lower = term.strip().lower()
        if not term_lower:
            continue
        if any(term_lower in value or value in term_lower for value in lowered):
            return True
    return False


def mentioned_in(text_lower: str, values: Iterable[str]) -> list[str]:
    """Entries whose full name appears as a word sequence in the text."""
    found = []
    for value in values:
        value_lower = value.strip().lower()
        if value_lower and re.search(r"\b" + re.escape(value_lower) + r"\b", text_lower):
            found.append(value)
    return found


class ChunkFilter:
    """Hard filters from SearchOptions, AND-combined. Unset options pass everything."""

    def __init__(self, options: SearchOptions, default_min_importance: float | None = None):
        self.options = options
        self.min_importance = (
            options.min_importance if options.min_importance is not None else default_min_importance
        )

    def __call__(self, chunk: Chunk) -> bool:
        options = self.options
        if options.project_id is not None and chunk.project_id != options.project_id:
            return False
        if options.user_id is not None and chunk.user_id != options.user_id:
            return False
        if options.content_types and chunk.content_type not in options.content_types:
            return False
        if options.themes and not fuzzy_overlap(chunk.themes, options.themes):
            return False
        if options.characters and not fuzzy_overlap(chunk.characters, options.characters):
            return False
        if self.min_importance is not None and chunk.importance < self.min_importance:
            return False
        if options.time_range is not None and not options.time_range.contains(chunk.created_at):
            return False
        return True

    def apply(self, scored: Iterable[tuple[Chunk, float]]) -> list[tuple[Chunk, float]]:
        return [(chunk, score) for chunk, score in scored if self(chunk)]


@dataclass(frozen=True)
class RankedChunk:
    chunk: Chunk
    score: float
    base_score: float


class ContextualRanker:
    """Composite relevance: base score times project, entity, importance and type boosts."""

    def multiplier(
        self,
        chunk: Chunk,
        query_lower: str,
        project_id: str | None,
        analysis: QueryAnalysis | None = None,
    ) -> float:
        factor = 1.0
        if project_id is not None and chunk.project_id == project_id:
            factor *= PROJECT_AFFINITY_BOOST

        theme_hits = len(mentioned_in(query_lower, chunk.themes))
        factor *= 1 + THEME_MATCH_WEIGHT * theme_hits

        character_hits = len(mentioned_in(query_lower, chunk.characters))
        factor *= 1 + CHARACTER_MATCH_WEIGHT * character_hits

        factor *= 1 + IMPORTANCE_WEIGHT * (chunk.importance - NEUTRAL_IMPORTANCE)

        if self.type_aligned(chunk.content_type, query_lower, analysis):
            factor *= TYPE_ALIGNMENT_BOOST
        return factor

    @staticmethod
    def type_aligned(
        content_type: ContentType, query_lower: str, analysis: QueryAnalysis | None = None
    ) -> bool:
        if analysis is not None and analysis.intent == content_type.value:
            return True
        cues = TYPE_QUERY_CUES.get(content_type, ())
        return any(re.search(r"\b" + cue + r"\b", query_lower) for cue in cues)

    def rank(
        self,
        scored: Sequence[tuple[Chunk, float]],
        query: str,
        project_id: str | None = None,
        analysis: QueryAnalysis | None = None,
    ) -> list[RankedChunk]:
        query_lower = query.lower()
        ranked = [
            RankedChunk(
                chunk=chunk,
                score=base * self.multiplier(chunk, query_lower, project_id, analysis),
                base_score=base,
            )
            for chunk, base in scored
        ]
        ranked.sort(
            key=lambda item: (item.score, item.chunk.importance, item.chunk.created_at),
            reverse=True,
        )
        return ranked
