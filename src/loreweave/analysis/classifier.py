"""Rule-based content-type classification.

Rules are evaluated in a fixed priority order and the first match wins:
dialogue > notes > character > plot > setting > theme > narrative.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from ..core.models import ContentType

_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")
_NOTES_RE = re.compile(r"\b(note|todo|to-do|remember)\s*:", re.IGNORECASE)
_CHARACTER_WORD_RE = re.compile(r"\bcharacters?\b", re.IGNORECASE)
_PRONOUN_VERB_RE = re.compile(
    r"\b(he|she|they|his|her|him)\s+(is|was|are|were|has|had|seems|seemed)\b", re.IGNORECASE
)
_PLOT_WORD_RE = re.compile(r"\b(plot|story|storyline|chapter|scene|arc)\b", re.IGNORECASE)
_SEQUENCE_RE = re.compile(
    r"\b(then|next|afterwards|suddenly|finally|later|meanwhile)\b", re.IGNORECASE
)
_SETTING_WORD_RE = re.compile(r"\b(setting|location|place|landscape|world-building)\b", re.IGNORECASE)
_LOCATION_PHRASE_RE = re.compile(
    r"\b(in|at|near|outside|inside|beyond|across)\s+the\s+\w+", re.IGNORECASE
)
_THEME_WORD_RE = re.compile(
    r"\b(theme|themes|meaning|symbolism|symbolizes|symbolises|represents|motif)\b", re.IGNORECASE
)

Predicate = Callable[[str], bool]


@dataclass(frozen=True)
class ClassificationRule:
    name: str
    predicate: Predicate
    content_type: ContentType


def sentence_count(text: str) -> int:
    return max(1, len([s for s in _SENTENCE_SPLIT_RE.split(text) if s.strip()]))


def quote_density(text: str) -> float:
    """Quoted passages per sentence."""
    return (text.count('"') / 2) / sentence_count(text)


def is_dialogue(text: str) -> bool:
    if '"' in text and ":" in text:
        return True
    return quote_density(text) > 0.5


def is_notes(text: str) -> bool:
    return bool(_NOTES_RE.search(text))


def is_character(text: str) -> bool:
    if _CHARACTER_WORD_RE.search(text):
        return True
    return len(_PRONOUN_VERB_RE.findall(text)) >= 2


def is_plot(text: str) -> bool:
    if _PLOT_WORD_RE.search(text):
        return True
    return len(_SEQUENCE_RE.findall(text)) >= 2


def is_setting(text: str) -> bool:
    if _SETTING_WORD_RE.search(text):
        return True
    return len(_LOCATION_PHRASE_RE.findall(text)) >= 2


def is_theme(text: str) -> bool:
    return bool(_THEME_WORD_RE.search(text))


DEFAULT_RULES: tuple[ClassificationRule, ...] = (
    ClassificationRule("dialogue", is_dialogue, ContentType.DIALOGUE),
    ClassificationRule("notes", is_notes, ContentType.NOTES),
    ClassificationRule("character", is_character, ContentType.CHARACTER),
    ClassificationRule("plot", is_plot, ContentType.PLOT),
    ClassificationRule("setting", is_setting, ContentType.SETTING),
    ClassificationRule("theme", is_theme, ContentType.THEME),
)


def classify_content_type(
    text: str,
    rules: Sequence[ClassificationRule] = DEFAULT_RULES,
    default: ContentType = ContentType.NARRATIVE,
) -> ContentType:
    if not text or not text.strip():
        return default
    for rule in rules:
        if rule.predicate(text):
            return rule.content_type
    return default
