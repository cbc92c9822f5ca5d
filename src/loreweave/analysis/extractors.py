"""
Deterministic, rule-based metadata extraction.

This is the always-available path of the content enricher: the AI extractor
is optional and every failure on that side lands here.
"""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Iterable, Mapping, Sequence

from ..core.models import (
    MAX_IMPORTANCE,
    MIN_IMPORTANCE,
    ContentType,
    MetadataBundle,
    ProjectProfile,
    bounded_unique,
)
from .classifier import DEFAULT_RULES, ClassificationRule, classify_content_type
from .lexicon import (
    ACTION_WORDS,
    CHARACTER_CONTEXT_WORDS,
    COMMON_WORDS,
    DESCRIPTIVE_WORDS,
    EMOTION_KEYWORDS,
    GENRE_INDICATORS,
    LOCATION_PREPOSITIONS,
    LOCATION_WORDS,
    PLOT_KEYWORDS,
    QUERY_INTENT_KEYWORDS,
    QUERY_STOPWORDS,
    THEME_KEYWORDS,
    TIME_MARKERS,
    TONE_INDICATORS,
)
from .models import ExtractedEntities, ProjectAnalysis, QueryAnalysis

BASE_IMPORTANCE = 5.0
CHARACTER_CONTEXT_WINDOW = 3

_WORD_RE = re.compile(r"[A-Za-z][A-Za-z'-]*")
_NAME_RE = re.compile(r"[A-Z][a-z]{2,}")
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")
_DIALOGUE_VERB_RE = re.compile(r"\b(said|asked|replied|whispered|shouted)\b")
_DRAMATIC_RE = re.compile(r"[!?]{2,}|\.{3,}")
_REPEATED_PUNCT_RE = re.compile(r"!{2,}|\?{2,}")
_SETTING_RE = re.compile(
    r"\b(?i:" + "|".join(LOCATION_PREPOSITIONS) + r")\s+(?:(?i:the)\s+)?"
    r"([A-Z][\w'-]*(?:\s+(?:of\s+)?[A-Z][\w'-]*)*)"
)
_LABELLED_LINE_FIELDS: dict[str, str] = {
    "character": "characters",
    "theme": "themes",
    "emotion": "emotions",
    "plot": "plot_elements",
    "style": "semantic_tags",
    "tag": "semantic_tags",
}
_EMPTY_MARKERS = frozenset({"none", "n/a", "na", "-", "unknown"})


def _keyword_pattern(keywords: Iterable[str]) -> re.Pattern[str]:
    return re.compile(r"\b(?:" + "|".join(re.escape(k) for k in keywords) + ")")


def _compile(mapping: Mapping[str, Sequence[str]]) -> dict[str, re.Pattern[str]]:
    return {label: _keyword_pattern(keywords) for label, keywords in mapping.items()}


_THEME_PATTERNS = _compile(THEME_KEYWORDS)
_EMOTION_PATTERNS = _compile(EMOTION_KEYWORDS)
_PLOT_PATTERNS = _compile(PLOT_KEYWORDS)
_GENRE_PATTERNS = _compile(GENRE_INDICATORS)
_TONE_PATTERNS = _compile(TONE_INDICATORS)
_ACTION_RE = _keyword_pattern(ACTION_WORDS)
_DESCRIPTIVE_RE = _keyword_pattern(DESCRIPTIVE_WORDS)
_TIME_RE = re.compile(
    r"\b(?:" + "|".join(TIME_MARKERS) + r")\b|\b\d{1,2}:\d{2}\b|\b(?:1[5-9]|20)\d{2}\b"
)


def _mentions(text_lower: str, term: str) -> bool:
    term = term.strip().lower()
    if not term:
        return False
    return re.search(r"\b" + re.escape(term) + r"\b", text_lower) is not None


def _match_labels(text_lower: str, patterns: Mapping[str, re.Pattern[str]], limit: int) -> list[str]:
    return [label for label, pattern in patterns.items() if pattern.search(text_lower)][:limit]


def _is_name_candidate(word: str) -> bool:
    return (
        _NAME_RE.fullmatch(word) is not None
        and word not in COMMON_WORDS
        and word not in LOCATION_WORDS
    )


def _has_character_context(name: str, words: list[str], lowered: list[str]) -> bool:
    for index, word in enumerate(words):
        if word != name:
            continue
        start = max(0, index - CHARACTER_CONTEXT_WINDOW)
        window = lowered[start : index + CHARACTER_CONTEXT_WINDOW + 1]
        if CHARACTER_CONTEXT_WORDS.intersection(window):
            return True
    return False


def extract_characters(text: str, known: Iterable[str] = (), limit: int = 10) -> list[str]:
    """Known characters need a single mention; new names need two in a character context."""
    if not text:
        return []
    text_lower = text.lower()
    known_found = [name for name in known if _mentions(text_lower, name)]

    words = _WORD_RE.findall(text)
    lowered = [word.lower() for word in words]
    counts = Counter(word for word in words if _is_name_candidate(word))
    discovered = [
        name
        for name, count in counts.most_common()
        if count >= 2 and _has_character_context(name, words, lowered)
    ]
    return bounded_unique([*known_found, *discovered], cap=limit)


def extract_themes(text: str, known: Iterable[str] = (), limit: int = 8) -> list[str]:
    text_lower = text.lower()
    known_found = [theme for theme in known if _mentions(text_lower, theme)]
    return bounded_unique([*known_found, *_match_labels(text_lower, _THEME_PATTERNS, limit)], cap=limit)


def extract_emotions(text: str, limit: int = 6) -> list[str]:
    return _match_labels(text.lower(), _EMOTION_PATTERNS, limit)


def extract_plot_elements(text: str, limit: int = 8) -> list[str]:
    return _match_labels(text.lower(), _PLOT_PATTERNS, limit)


def generate_semantic_tags(text: str, limit: int = 10) -> list[str]:
    text_lower = text.lower()
    word_count = len(text.split())
    tags: list[str] = ["short" if word_count < 50 else "medium" if word_count < 200 else "long"]
    tags.extend(_match_labels(text_lower, _GENRE_PATTERNS, limit))
    if '"' in text or _DIALOGUE_VERB_RE.search(text_lower):
        tags.append("dialogue")
    if _ACTION_RE.search(text_lower):
        tags.append("action")
    if len(_DESCRIPTIVE_RE.findall(text_lower)) >= 2:
        tags.append("descriptive")
    if _TIME_RE.search(text_lower):
        tags.append("time-specific")
    if _DRAMATIC_RE.search(text):
        tags.append("dramatic")
    if len(text) > 1000:
        tags.append("long-form")
    if len([p for p in text.split("\n\n") if p.strip()]) > 3:
        tags.append("multi-paragraph")
    return bounded_unique(tags, cap=limit)


def extract_settings(text: str, limit: int = 6) -> list[str]:
    settings: list[str] = []
    for sentence in _SENTENCE_SPLIT_RE.split(text):
        for match in _SETTING_RE.finditer(sentence):
            location = match.group(1).strip()
            if location in COMMON_WORDS:
                continue
            if 2 < len(location) < 30:
                settings.append(location)
    return bounded_unique(settings, cap=limit)


def analyze_writing_style(text: str) -> str:
    sentences = [s for s in _SENTENCE_SPLIT_RE.split(text) if s.strip()]
    if not sentences:
        return "standard"
    average_length = sum(len(s.split()) for s in sentences) / len(sentences)
    dialogue_ratio = (text.count('"') / 2) / len(sentences)

    parts: list[str] = []
    if average_length > 25:
        parts.append("complex, detailed")
    elif average_length < 15:
        parts.append("concise, direct")
    else:
        parts.append("balanced")

    if dialogue_ratio > 0.3:
        parts.append("dialogue-heavy")
    elif dialogue_ratio < 0.1:
        parts.append("narrative-focused")

    if _REPEATED_PUNCT_RE.search(text):
        parts.append("dramatic")
    return " ".join(parts)


def analyze_tone(text: str) -> str:
    text_lower = text.lower()
    scores = {tone: len(pattern.findall(text_lower)) for tone, pattern in _TONE_PATTERNS.items()}
    tone, score = max(scores.items(), key=lambda item: item[1])
    return tone if score > 0 else "neutral"


def calculate_importance(
    text: str,
    *,
    characters: Sequence[str] = (),
    themes: Sequence[str] = (),
    plot_elements: Sequence[str] = (),
    emotions: Sequence[str] = (),
    semantic_tags: Sequence[str] = (),
) -> float:
    importance = BASE_IMPORTANCE
    importance += min(len(characters) * 0.5, 2.0)
    importance += min(len(themes) * 0.3, 1.5)
    importance += min(len(plot_elements) * 0.4, 2.0)
    importance += min(len(emotions) * 0.2, 1.0)
    if '"' in text:
        importance += 0.5
    if "action" in semantic_tags:
        importance += 0.5
    return round(max(MIN_IMPORTANCE, min(MAX_IMPORTANCE, importance)), 2)


def parse_labelled_lines(text: str, per_list: int = 5) -> ExtractedEntities | None:
    """Secondary parse for replies shaped like `Characters: Thor, Loki` lines."""
    if not text:
        return None
    collected: dict[str, list[str]] = {}
    for line in text.splitlines():
        label, sep, rest = line.partition(":")
        if not sep:
            continue
        label = label.strip(" -*#\t").lower()
        field = next(
            (name for prefix, name in _LABELLED_LINE_FIELDS.items() if label.startswith(prefix)),
            None,
        )
        if field is None:
            continue
        items = [
            item.strip(" .\"'[]")
            for item in re.split(r"[,;]", rest)
            if item.strip(" .\"'[]") and item.strip(" .\"'[]").lower() not in _EMPTY_MARKERS
        ]
        collected.setdefault(field, []).extend(items[:per_list])
    if not collected:
        return None
    entities = ExtractedEntities.model_validate(collected)
    return None if entities.is_empty() else entities


class RuleBasedExtractor:
    """Keyword and pattern extraction with project-profile awareness."""

    def __init__(self, rules: Sequence[ClassificationRule] = DEFAULT_RULES):
        self.rules = tuple(rules)

    def classify(self, text: str) -> ContentType:
        return classify_content_type(text, self.rules)

    def extract_entities(self, text: str, profile: ProjectProfile | None = None) -> ExtractedEntities:
        known_characters = profile.characters if profile else ()
        known_themes = profile.themes if profile else ()
        return ExtractedEntities(
            characters=extract_characters(text, known_characters),
            themes=extract_themes(text, known_themes),
            emotions=extract_emotions(text),
            plot_elements=extract_plot_elements(text),
            semantic_tags=generate_semantic_tags(text),
        )

    def build_bundle(
        self,
        text: str,
        entities: ExtractedEntities,
        *,
        source: str = "rules",
    ) -> MetadataBundle:
        """Turn extracted entities into a full bundle (type, settings, importance)."""
        return MetadataBundle(
            content_type=self.classify(text),
            characters=entities.characters,
            themes=entities.themes,
            emotions=entities.emotions,
            plot_elements=entities.plot_elements,
            semantic_tags=entities.semantic_tags,
            settings=extract_settings(text),
            importance=calculate_importance(
                text,
                characters=entities.characters,
                themes=entities.themes,
                plot_elements=entities.plot_elements,
                emotions=entities.emotions,
                semantic_tags=entities.semantic_tags,
            ),
            source=source,
        )

    def extract(self, text: str, profile: ProjectProfile | None = None) -> MetadataBundle:
        return self.build_bundle(text, self.extract_entities(text, profile))

    def analyze_project(self, text: str) -> ProjectAnalysis:
        return ProjectAnalysis(
            themes=extract_themes(text),
            characters=extract_characters(text, limit=20),
            plot_points=extract_plot_elements(text),
            settings=extract_settings(text),
            writing_style=analyze_writing_style(text),
            tone=analyze_tone(text),
        )

    def analyze_query(
        self,
        query: str,
        known_characters: Iterable[str] = (),
        known_themes: Iterable[str] = (),
    ) -> QueryAnalysis:
        query_lower = query.lower()
        intent = next(
            (
                name
                for name, keywords in QUERY_INTENT_KEYWORDS.items()
                if any(keyword in query_lower for keyword in keywords)
            ),
            "general",
        )
        themes = [t for t in known_themes if _mentions(query_lower, t)]
        themes.extend(_match_labels(query_lower, _THEME_PATTERNS, 8))
        characters = [c for c in known_characters if _mentions(query_lower, c)]
        characters.extend(w for w in _WORD_RE.findall(query) if _is_name_candidate(w))
        entities = [
            word
            for word in re.findall(r"[a-z0-9']+", query_lower)
            if len(word) > 3 and word not in QUERY_STOPWORDS
        ]
        return QueryAnalysis(
            intent=intent,
            entities=bounded_unique(entities),
            themes=bounded_unique(themes),
            characters=bounded_unique(characters),
        )
