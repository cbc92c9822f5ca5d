from __future__ import annotations

import re
from collections import Counter
from collections.abc import Sequence

from ..models import (
    Chunk,
    ContextInfo,
    MatchedElements,
    ProjectInsights,
    ProjectProfile,
    SearchHit,
    SearchStrategy,
    SearchSummary,
    bounded_unique,
)
from .indexing import overlap_coefficient, query_terms
from .scoring import mentioned_in

SUMMARY_PREFIX_CHARS = 150
MAX_SUMMARY_SENTENCE = 300
RELATED_EXCERPT_CHARS = 100

_SENTENCE_RE = re.compile(r"[^.!?]+[.!?]*")


def _excerpt(text: str, limit: int) -> str:
    text = " ".join(text.split())
    return text if len(text) <= limit else text[:limit].rstrip() + "..."


def split_sentences(text: str) -> list[str]:
    return [s.strip() for s in _SENTENCE_RE.findall(text) if s.strip()]


def contextual_summary(content: str, query: str) -> str:
    """First sentence containing the query, else the first sentence, else a prefix."""
    sentences = split_sentences(content)
    query_lower = query.strip().lower()
    chosen = None
    if query_lower:
        chosen = next((s for s in sentences if query_lower in s.lower()), None)
        if chosen is None:
            terms = query_terms(query_lower)
            chosen = next((s for s in sentences if any(t in s.lower() for t in terms)), None)
    if chosen is None and sentences:
        chosen = sentences[0]
    if not chosen or len(chosen) > MAX_SUMMARY_SENTENCE:
        return _excerpt(content, SUMMARY_PREFIX_CHARS)
    return chosen


def matched_elements(chunk: Chunk, query: str) -> MatchedElements:
    query_lower = query.lower()
    return MatchedElements(
        characters=mentioned_in(query_lower, chunk.characters),
        themes=mentioned_in(query_lower, chunk.themes),
        direct_match=bool(query_lower.strip()) and query_lower.strip() in chunk.content.lower(),
    )


def related_excerpts(
    chunk: Chunk,
    project_chunks: Sequence[Chunk],
    threshold: float = 0.3,
    limit: int = 3,
) -> list[str]:
    """Short excerpts of sibling chunks sharing characters or themes."""
    terms = chunk.entity_terms()
    if not terms:
        return []
    scored: list[tuple[float, Chunk]] = []
    for other in project_chunks:
        if other.chunk_id == chunk.chunk_id:
            continue
        overlap = overlap_coefficient(terms, other.entity_terms())
        if overlap > threshold:
            scored.append((overlap, other))
    scored.sort(key=lambda item: item[0], reverse=True)
    return [_excerpt(other.content, RELATED_EXCERPT_CHARS) for _, other in scored[:limit]]


def context_info(chunk: Chunk, summary: str) -> ContextInfo:
    return ContextInfo(
        summary=summary,
        key_elements=[*chunk.characters[:3], *chunk.themes[:2], *chunk.emotions[:2]],
        position=f"Chunk {chunk.chunk_index + 1} of {chunk.total_chunks}",
        importance=chunk.importance,
    )


def build_hit(
    chunk: Chunk,
    score: float,
    base_score: float,
    query: str,
    project_chunks: Sequence[Chunk] | None = None,
    *,
    related_threshold: float = 0.3,
    max_related: int = 3,
) -> SearchHit:
    summary = contextual_summary(chunk.content, query)
    related = (
        related_excerpts(chunk, project_chunks, related_threshold, max_related)
        if project_chunks
        else []
    )
    return SearchHit(
        chunk=chunk.model_copy(update={"related_chunks": related}),
        score=round(score, 4),
        base_score=round(base_score, 4),
        contextual_summary=summary,
        related_chunks=related,
        matched_elements=matched_elements(chunk, query),
        context_info=context_info(chunk, summary),
    )


def _ranked_union(hits: Sequence[SearchHit], attribute: str, query: str, limit: int) -> list[str]:
    values = [value for hit in hits for value in getattr(hit.chunk, attribute)]
    in_query = mentioned_in(query.lower(), values)
    counts = Counter(value.lower() for value in values)
    by_frequency = sorted(bounded_unique(values, cap=None), key=lambda v: -counts[v.lower()])
    return bounded_unique([*in_query, *by_frequency], cap=limit)


def build_search_summary(hits: Sequence[SearchHit], strategy: SearchStrategy) -> SearchSummary:
    characters = bounded_unique([c for hit in hits for c in hit.chunk.characters], cap=None)
    themes = bounded_unique([t for hit in hits for t in hit.chunk.themes], cap=None)
    content_types = list(dict.fromkeys(hit.chunk.content_type.value for hit in hits))

    findings: list[str] = []
    if characters:
        findings.append(f"Found content related to {', '.join(characters[:3])}")
    if themes:
        findings.append(f"Key themes include {', '.join(themes[:3])}")
    if strategy == "fallback" and hits:
        findings.append(f"Found {len(hits)} results using text search")

    return SearchSummary(
        total_results=len(hits),
        top_characters=characters[:5],
        top_themes=themes[:5],
        content_types=content_types,
        key_findings=findings,
        search_strategy=strategy,
    )


def suggested_connections(
    hits: Sequence[SearchHit], project_chunks: Sequence[Chunk], limit: int = 5
) -> list[str]:
    suggestions: list[str] = []
    theme_counts = Counter(t.lower() for hit in hits for t in bounded_unique(hit.chunk.themes))
    for theme, count in theme_counts.items():
        if count > 1:
            suggestions.append(f"Multiple passages explore the theme of {theme}")

    hit_ids = {hit.chunk.chunk_id for hit in hits}
    for hit in hits:
        characters = {c.lower() for c in hit.chunk.characters}
        if not characters:
            continue
        for other in project_chunks:
            if other.chunk_id in hit_ids:
                continue
            shared = characters & {c.lower() for c in other.characters}
            if shared:
                suggestions.append(
                    f"Related to: {_excerpt(other.content, 50)} (shares {', '.join(sorted(shared))})"
                )
                break
    return bounded_unique(suggestions, cap=limit)


def contextual_hints(
    hits: Sequence[SearchHit], profile: ProjectProfile | None
) -> list[str]:
    if not hits:
        return ["No results found. Try broadening your search terms."]

    hints: list[str] = []
    found_characters = bounded_unique([c for hit in hits for c in hit.chunk.characters], cap=None)
    found_themes = {t.lower() for hit in hits for t in hit.chunk.themes}
    if found_characters:
        hints.append(f"Found content involving: {', '.join(found_characters[:3])}")

    if profile is not None:
        found_lower = {c.lower() for c in found_characters}
        unexplored_themes = [t for t in profile.themes if t.lower() not in found_themes]
        if unexplored_themes:
            hints.append(f"Themes not covered by these results: {', '.join(unexplored_themes[:3])}")
        other_characters = [c for c in profile.characters if c.lower() not in found_lower]
        if other_characters:
            hints.append(f"Other characters in this project: {', '.join(other_characters[:3])}")

    distribution = Counter(hit.chunk.content_type.value for hit in hits)
    if len(distribution) > 1:
        parts = ", ".join(f"{count} {kind}" for kind, count in distribution.most_common())
        hints.append(f"Results span several content types: {parts}")
    return hints


def build_project_insights(
    hits: Sequence[SearchHit],
    query: str,
    project_chunks: Sequence[Chunk],
    profile: ProjectProfile | None,
) -> ProjectInsights:
    return ProjectInsights(
        relevant_characters=_ranked_union(hits, "characters", query, 5),
        relevant_themes=_ranked_union(hits, "themes", query, 5),
        suggested_connections=suggested_connections(hits, project_chunks),
        contextual_hints=contextual_hints(hits, profile),
    )
