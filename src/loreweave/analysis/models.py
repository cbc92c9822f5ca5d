from __future__ import annotations

# analysis/models.py
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, Field, field_validator

MAX_ITEM_LENGTH = 50

QueryIntent = Literal["character", "plot", "theme", "setting", "dialogue", "general"]


def _clean_items(value: Any, cap: int) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple, set)):
        return []
    cleaned: list[str] = []
    seen: set[str] = set()
    for item in value:
        if not isinstance(item, str):
            continue
        text = item.strip()
        if not text or len(text) > MAX_ITEM_LENGTH or text.lower() in seen:
            continue
        seen.add(text.lower())
        cleaned.append(text)
        if len(cleaned) >= cap:
            break
    return cleaned


class ExtractedEntities(BaseModel):
    characters: list[str] = Field(
        default_factory=list, description="Named characters or people (max 10)"
    )
    themes: list[str] = Field(default_factory=list, description="Major themes (max 8)")
    emotions: list[str] = Field(default_factory=list, description="Emotions conveyed (max 6)")
    plot_elements: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("plot_elements", "plotElements", "plot"),
        description="Plot elements such as conflict, revelation, journey (max 8)",
    )
    semantic_tags: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("semantic_tags", "semanticTags", "tags", "style"),
        description="Genre, style or other descriptive tags (max 10)",
    )

    @field_validator("characters", mode="before")
    @classmethod
    def _characters(cls, value: Any) -> list[str]:
        return _clean_items(value, 10)

    @field_validator("themes", "plot_elements", mode="before")
    @classmethod
    def _themes_and_plot(cls, value: Any) -> list[str]:
        return _clean_items(value, 8)

    @field_validator("emotions", mode="before")
    @classmethod
    def _emotions(cls, value: Any) -> list[str]:
        return _clean_items(value, 6)

    @field_validator("semantic_tags", mode="before")
    @classmethod
    def _tags(cls, value: Any) -> list[str]:
        return _clean_items(value, 10)

    def is_empty(self) -> bool:
        return not any(
            (self.characters, self.themes, self.emotions, self.plot_elements, self.semantic_tags)
        )


class QueryAnalysis(BaseModel):
    intent: QueryIntent = Field(default="general", description="What the query is mainly about")
    entities: list[str] = Field(default_factory=list, description="Salient query terms")
    themes: list[str] = Field(default_factory=list, description="Themes mentioned in the query")
    characters: list[str] = Field(
        default_factory=list, description="Characters mentioned in the query"
    )

    @field_validator("intent", mode="before")
    @classmethod
    def _intent(cls, value: Any) -> str:
        allowed = {"character", "plot", "theme", "setting", "dialogue", "general"}
        if isinstance(value, str) and value.strip().lower() in allowed:
            return value.strip().lower()
        return "general"

    @field_validator("entities", "themes", "characters", mode="before")
    @classmethod
    def _items(cls, value: Any) -> list[str]:
        return _clean_items(value, 10)


class ProjectAnalysis(BaseModel):
    """Whole-project reading used to seed or refresh a profile."""

    themes: list[str] = Field(default_factory=list)
    characters: list[str] = Field(default_factory=list)
    plot_points: list[str] = Field(default_factory=list)
    settings: list[str] = Field(default_factory=list)
    writing_style: str = "balanced"
    tone: str = "neutral"


class RelevanceScore(BaseModel):
    score: float = Field(default=0.5, description="Relevance between 0 (unrelated) and 1 (exact)")

    @field_validator("score", mode="before")
    @classmethod
    def _bounded(cls, value: Any) -> float:
        try:
            score = float(value)
        except (TypeError, ValueError):
            return 0.5
        return max(0.0, min(1.0, score))
