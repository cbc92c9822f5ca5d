# core/models.py
from __future__ import annotations

import math
from collections.abc import Sequence
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal
from uuid import uuid4

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

MAX_ENTITY_ITEMS = 10
MAX_PROFILE_CHARACTERS = 20
MAX_PROFILE_THEMES = 10
MAX_PROFILE_PLOT_POINTS = 20
MAX_PROFILE_SETTINGS = 10
MIN_IMPORTANCE = 1.0
MAX_IMPORTANCE = 10.0
NEUTRAL_IMPORTANCE = 5.0

SearchStrategy = Literal["semantic", "fallback"]


class ContentType(str, Enum):
    NARRATIVE = "narrative"
    DIALOGUE = "dialogue"
    NOTES = "notes"
    CHARACTER = "character"
    PLOT = "plot"
    SETTING = "setting"
    THEME = "theme"
    # Stored project content surfaced by the lexical path when a project has no chunks
    PROJECT = "project"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def coerce_datetime(
    value: datetime | str | int | float | None,
    default: datetime | None = None,
) -> datetime | None:
    dt: datetime | None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        # Epoch timestamps in milliseconds are common in older snapshots
        seconds = value / 1000.0 if value > 1e11 else float(value)
        dt = datetime.fromtimestamp(seconds, tz=timezone.utc)
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            try:
                dt = datetime.strptime(value, "%Y-%m-%d %H:%M:%S.%f%z")
            except ValueError:
                dt = default
    else:
        dt = default

    if dt is None:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def clamp_importance(value: Any) -> float:
    try:
        score = float(value)
    except (TypeError, ValueError):
        return NEUTRAL_IMPORTANCE
    if math.isnan(score):
        return NEUTRAL_IMPORTANCE
    return max(MIN_IMPORTANCE, min(MAX_IMPORTANCE, score))


def bounded_unique(values: Any, cap: int | None = MAX_ENTITY_ITEMS) -> list[str]:
    """Ordered, case-insensitive de-duplication; first spelling wins."""
    if values is None:
        return []
    if isinstance(values, str):
        values = [values]
    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        if value is None:
            continue
        text = str(value).strip()
        if not text:
            continue
        folded = text.lower()
        if folded in seen:
            continue
        seen.add(folded)
        result.append(text)
        if cap is not None and len(result) >= cap:
            break
    return result


def merge_bounded(existing: list[str], incoming: list[str], cap: int) -> list[str]:
    """Union that keeps every existing entry first and only appends up to `cap`."""
    return bounded_unique([*existing, *incoming], cap=max(cap, len(existing)))


class Chunk(BaseModel):
    """A unit of indexed text plus its enriched metadata.

    `content` is immutable once the chunk exists, and `project_id` cannot be
    changed after it has been set. `related_chunks` and `embedding` are
    transient and never written to snapshots.
    """

    model_config = ConfigDict(validate_assignment=True, populate_by_name=True)

    chunk_id: str = Field(
        default_factory=lambda: str(uuid4()),
        validation_alias=AliasChoices("chunk_id", "chunkId", "id"),
    )
    content: str
    project_id: str | None = Field(
        default=None, validation_alias=AliasChoices("project_id", "projectId")
    )
    user_id: str | None = Field(default=None, validation_alias=AliasChoices("user_id", "userId"))
    document_id: str | None = Field(
        default=None, validation_alias=AliasChoices("document_id", "documentId")
    )
    content_type: ContentType = Field(
        default=ContentType.NARRATIVE,
        validation_alias=AliasChoices("content_type", "contentType", "type"),
    )
    characters: list[str] = Field(default_factory=list)
    themes: list[str] = Field(default_factory=list)
    emotions: list[str] = Field(default_factory=list)
    plot_elements: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("plot_elements", "plotElements")
    )
    semantic_tags: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("semantic_tags", "semanticTags")
    )
    importance: float = NEUTRAL_IMPORTANCE
    chunk_index: int = Field(default=0, validation_alias=AliasChoices("chunk_index", "chunkIndex"))
    total_chunks: int = Field(
        default=1, validation_alias=AliasChoices("total_chunks", "totalChunks")
    )
    word_count: int = Field(default=0, validation_alias=AliasChoices("word_count", "wordCount"))
    created_at: datetime = Field(
        default_factory=utcnow,
        validation_alias=AliasChoices("created_at", "createdAt", "timestamp"),
    )
    updated_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("updated_at", "updatedAt")
    )
    previous_context: str | None = Field(
        default=None, validation_alias=AliasChoices("previous_context", "previousContext")
    )
    next_context: str | None = Field(
        default=None, validation_alias=AliasChoices("next_context", "nextContext")
    )
    extra: dict[str, Any] = Field(default_factory=dict)

    related_chunks: list[str] = Field(default_factory=list, exclude=True)
    embedding: list[float] | None = Field(default=None, exclude=True, repr=False)

    @field_validator("characters", "themes", "emotions", "plot_elements", "semantic_tags", mode="before")
    @classmethod
    def _bound_entities(cls, value: Any) -> list[str]:
        return bounded_unique(value)

    @field_validator("importance", mode="before")
    @classmethod
    def _clamp_importance(cls, value: Any) -> float:
        return clamp_importance(value)

    @field_validator("content_type", mode="before")
    @classmethod
    def _coerce_content_type(cls, value: Any) -> Any:
        if isinstance(value, str):
            try:
                return ContentType(value.strip().lower())
            except ValueError:
                return ContentType.NARRATIVE
        return value

    @field_validator("created_at", mode="before")
    @classmethod
    def _coerce_created(cls, value: Any) -> datetime:
        return coerce_datetime(value, default=utcnow())

    @field_validator("updated_at", mode="before")
    @classmethod
    def _coerce_updated(cls, value: Any) -> datetime | None:
        return coerce_datetime(value)

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "content" and "content" in self.__dict__:
            raise ValueError("Chunk content is immutable")
        if name == "project_id":
            current = self.__dict__.get("project_id")
            if current is not None and value != current:
                raise ValueError(f"Chunk {self.chunk_id} already belongs to project {current}")
        super().__setattr__(name, value)

    def to_document(self) -> dict[str, Any]:
        """Snapshot representation: `{content, metadata}`."""
        metadata = self.model_dump(mode="json", exclude={"content"})
        return {"content": self.content, "metadata": metadata}

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> Chunk:
        metadata = document.get("metadata") or {}
        return cls.model_validate({**metadata, "content": document.get("content", "")})

    def entity_terms(self) -> set[str]:
        """Lower-cased characters and themes, used for relatedness."""
        return {value.lower() for value in [*self.characters, *self.themes]}


class MetadataBundle(BaseModel):
    """Output of the content enricher for one piece of text."""

    content_type: ContentType = ContentType.NARRATIVE
    characters: list[str] = Field(default_factory=list)
    themes: list[str] = Field(default_factory=list)
    emotions: list[str] = Field(default_factory=list)
    plot_elements: list[str] = Field(default_factory=list)
    semantic_tags: list[str] = Field(default_factory=list)
    settings: list[str] = Field(default_factory=list)
    importance: float = NEUTRAL_IMPORTANCE
    source: Literal["ai", "line", "rules", "placeholder"] = "rules"

    @field_validator("characters", "themes", "emotions", "plot_elements", "semantic_tags", mode="before")
    @classmethod
    def _bound_entities(cls, value: Any) -> list[str]:
        return bounded_unique(value)

    @field_validator("settings", mode="before")
    @classmethod
    def _bound_settings(cls, value: Any) -> list[str]:
        return bounded_unique(value, cap=6)

    @field_validator("importance", mode="before")
    @classmethod
    def _clamp_importance(cls, value: Any) -> float:
        return clamp_importance(value)


class DocumentMetadata(BaseModel):
    """Caller-supplied metadata for `add_document`.

    Entity hints are merged into the extracted metadata; `content_type` and
    `importance` override the enricher when given.
    """

    model_config = ConfigDict(populate_by_name=True)

    project_id: str | None = Field(
        default=None, validation_alias=AliasChoices("project_id", "projectId")
    )
    user_id: str | None = Field(default=None, validation_alias=AliasChoices("user_id", "userId"))
    document_id: str | None = Field(
        default=None, validation_alias=AliasChoices("document_id", "documentId")
    )
    title: str | None = None
    content_type: ContentType | None = Field(
        default=None, validation_alias=AliasChoices("content_type", "contentType", "type")
    )
    importance: float | None = None
    characters: list[str] = Field(default_factory=list)
    themes: list[str] = Field(default_factory=list)
    created_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("created_at", "createdAt", "timestamp")
    )
    extra: dict[str, Any] = Field(default_factory=dict)

    @field_validator("created_at", mode="before")
    @classmethod
    def _coerce_created(cls, value: Any) -> datetime | None:
        return coerce_datetime(value)


class ProjectProfile(BaseModel):
    """Aggregated per-project metadata; always rebuildable from the project's chunks."""

    model_config = ConfigDict(populate_by_name=True)

    project_id: str = Field(validation_alias=AliasChoices("project_id", "projectId"))
    title: str | None = None
    characters: list[str] = Field(default_factory=list)
    themes: list[str] = Field(default_factory=list)
    plot_points: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("plot_points", "plotPoints")
    )
    settings: list[str] = Field(default_factory=list)
    writing_style: str | None = Field(
        default=None, validation_alias=AliasChoices("writing_style", "writingStyle")
    )
    tone_analysis: str | None = Field(
        default=None, validation_alias=AliasChoices("tone_analysis", "toneAnalysis")
    )
    last_updated: datetime = Field(
        default_factory=utcnow, validation_alias=AliasChoices("last_updated", "lastUpdated")
    )

    @field_validator("characters", mode="before")
    @classmethod
    def _cap_characters(cls, value: Any) -> list[str]:
        return bounded_unique(value, cap=MAX_PROFILE_CHARACTERS)

    @field_validator("themes", mode="before")
    @classmethod
    def _cap_themes(cls, value: Any) -> list[str]:
        return bounded_unique(value, cap=MAX_PROFILE_THEMES)

    @field_validator("plot_points", mode="before")
    @classmethod
    def _cap_plot_points(cls, value: Any) -> list[str]:
        return bounded_unique(value, cap=MAX_PROFILE_PLOT_POINTS)

    @field_validator("settings", mode="before")
    @classmethod
    def _cap_settings(cls, value: Any) -> list[str]:
        return bounded_unique(value, cap=MAX_PROFILE_SETTINGS)

    @field_validator("last_updated", mode="before")
    @classmethod
    def _coerce_updated(cls, value: Any) -> datetime:
        return coerce_datetime(value, default=utcnow())


class ProfileEntities(BaseModel):
    """Entities merged into a profile after an ingestion."""

    characters: list[str] = Field(default_factory=list)
    themes: list[str] = Field(default_factory=list)
    plot_points: list[str] = Field(default_factory=list)
    settings: list[str] = Field(default_factory=list)
    writing_style: str | None = None
    tone_analysis: str | None = None

    @classmethod
    def from_bundle(
        cls,
        bundle: MetadataBundle,
        characters: Sequence[str] = (),
        themes: Sequence[str] = (),
    ) -> ProfileEntities:
        """Entities of an enriched chunk; caller-supplied names come first."""
        return cls(
            characters=[*characters, *bundle.characters],
            themes=[*themes, *bundle.themes],
            plot_points=bundle.plot_elements,
            settings=bundle.settings,
        )


class TimeRange(BaseModel):
    start: datetime | None = None
    end: datetime | None = None

    @field_validator("start", "end", mode="before")
    @classmethod
    def _coerce(cls, value: Any) -> datetime | None:
        return coerce_datetime(value)

    def contains(self, moment: datetime) -> bool:
        if self.start is not None and moment < self.start:
            return False
        if self.end is not None and moment > self.end:
            return False
        return True


class SearchOptions(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    project_id: str | None = Field(
        default=None, validation_alias=AliasChoices("project_id", "projectId")
    )
    user_id: str | None = Field(default=None, validation_alias=AliasChoices("user_id", "userId"))
    content_types: list[ContentType] | None = Field(
        default=None, validation_alias=AliasChoices("content_types", "contentTypes")
    )
    themes: list[str] | None = None
    characters: list[str] | None = None
    min_importance: float | None = Field(
        default=None,
        validation_alias=AliasChoices("min_importance", "minImportance", "importanceThreshold"),
    )
    time_range: TimeRange | None = Field(
        default=None, validation_alias=AliasChoices("time_range", "timeRange")
    )
    limit: int | None = Field(default=None, ge=1)
    include_context: bool | None = Field(
        default=None, validation_alias=AliasChoices("include_context", "includeContext")
    )
    include_insights: bool = Field(
        default=True, validation_alias=AliasChoices("include_insights", "includeInsights")
    )


class MatchedElements(BaseModel):
    characters: list[str] = Field(default_factory=list)
    themes: list[str] = Field(default_factory=list)
    direct_match: bool = False


class ContextInfo(BaseModel):
    summary: str
    key_elements: list[str] = Field(default_factory=list)
    position: str
    importance: float


class SearchHit(BaseModel):
    chunk: Chunk
    score: float
    base_score: float = 0.0
    contextual_summary: str = ""
    related_chunks: list[str] = Field(default_factory=list)
    matched_elements: MatchedElements | None = None
    context_info: ContextInfo | None = None


class SearchSummary(BaseModel):
    total_results: int
    top_characters: list[str] = Field(default_factory=list)
    top_themes: list[str] = Field(default_factory=list)
    content_types: list[str] = Field(default_factory=list)
    key_findings: list[str] = Field(default_factory=list)
    search_strategy: SearchStrategy = "semantic"


class ProjectInsights(BaseModel):
    relevant_characters: list[str] = Field(default_factory=list)
    relevant_themes: list[str] = Field(default_factory=list)
    suggested_connections: list[str] = Field(default_factory=list)
    contextual_hints: list[str] = Field(default_factory=list)


class SearchResponse(BaseModel):
    results: list[SearchHit] = Field(default_factory=list)
    project_insights: ProjectInsights | None = None
    search_summary: SearchSummary | None = None


class ProjectStats(BaseModel):
    project_id: str
    total_documents: int = 0
    total_chunks: int = 0
    characters: list[str] = Field(default_factory=list)
    themes: list[str] = Field(default_factory=list)
    content_types: list[str] = Field(default_factory=list)
    emotions: list[str] = Field(default_factory=list)
    plot_elements: list[str] = Field(default_factory=list)
    semantic_tags: list[str] = Field(default_factory=list)
    average_importance: float = 0.0
    total_word_count: int = 0
    last_updated: datetime | None = None


class EngineStats(BaseModel):
    total_documents: int = 0
    total_projects: int = 0
    total_chunks: int = 0
    average_importance: float = 0.0
    top_themes: list[str] = Field(default_factory=list)
    top_characters: list[str] = Field(default_factory=list)
    last_updated: datetime | None = None
    cache: dict[str, float] = Field(default_factory=dict)


class ProjectRecord(BaseModel):
    """Read-only view of a project row from the external project store."""

    model_config = ConfigDict(populate_by_name=True)

    project_id: str = Field(validation_alias=AliasChoices("project_id", "projectId", "id"))
    title: str | None = None
    content: str = ""
    updated_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("updated_at", "updatedAt")
    )

    @field_validator("updated_at", mode="before")
    @classmethod
    def _coerce_updated(cls, value: Any) -> datetime | None:
        return coerce_datetime(value)
