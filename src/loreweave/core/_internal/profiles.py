from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence

from ...cache import CacheKeys, TTLCache
from ...errors import ProjectNotFoundError
from ...store.logging import log_context
from ..models import (
    MAX_PROFILE_CHARACTERS,
    MAX_PROFILE_PLOT_POINTS,
    MAX_PROFILE_SETTINGS,
    MAX_PROFILE_THEMES,
    Chunk,
    ProfileEntities,
    ProjectProfile,
    ProjectRecord,
    merge_bounded,
    utcnow,
)
from ..protocols import ProjectStore
from .enrichment import ContentEnricher

logger = logging.getLogger(__name__)

# Style and tone are derived from a bounded sample of the project's text
STYLE_SAMPLE_CHARS = 20000


def merge_entities(profile: ProjectProfile, entities: ProfileEntities) -> ProjectProfile:
    """Union with per-field caps; entries already in the profile are never displaced."""
    return profile.model_copy(
        update={
            "characters": merge_bounded(profile.characters, entities.characters, MAX_PROFILE_CHARACTERS),
            "themes": merge_bounded(profile.themes, entities.themes, MAX_PROFILE_THEMES),
            "plot_points": merge_bounded(profile.plot_points, entities.plot_points, MAX_PROFILE_PLOT_POINTS),
            "settings": merge_bounded(profile.settings, entities.settings, MAX_PROFILE_SETTINGS),
            "writing_style": entities.writing_style or profile.writing_style,
            "tone_analysis": entities.tone_analysis or profile.tone_analysis,
            "last_updated": utcnow(),
        }
    )


class ProfileAggregator:
    """
    Owns the per-project profiles.

    Profiles are derived state: they can always be rebuilt by replaying a
    project's chunks in insertion order. Lookups go cached profile, in-memory
    profile, rebuild from chunks, then the external project store.
    """

    def __init__(
        self,
        cache: TTLCache,
        enricher: ContentEnricher,
        project_store: ProjectStore | None = None,
        *,
        profile_ttl: float = 1800.0,
        project_ttl: float = 900.0,
    ):
        self.cache = cache
        self.enricher = enricher
        self.project_store = project_store
        self.profile_ttl = profile_ttl
        self.project_ttl = project_ttl
        self._profiles: dict[str, ProjectProfile] = {}

    def __contains__(self, project_id: str) -> bool:
        return project_id in self._profiles

    def get(self, project_id: str) -> ProjectProfile | None:
        return self._profiles.get(project_id)

    def all(self) -> dict[str, ProjectProfile]:
        return dict(self._profiles)

    def load(self, profiles: Mapping[str, ProjectProfile]) -> None:
        self._profiles = dict(profiles)

    def invalidate(self, project_id: str) -> None:
        self.cache.delete(CacheKeys.project_context(project_id))
        self.cache.delete(CacheKeys.project_stats(project_id))

    def merge(self, project_id: str, entities: ProfileEntities) -> ProjectProfile:
        existing = self._profiles.get(project_id) or ProjectProfile(project_id=project_id)
        merged = merge_entities(existing, entities)
        self._profiles[project_id] = merged
        self.invalidate(project_id)
        return merged

    def rebuild(self, project_id: str, chunks: Sequence[Chunk]) -> ProjectProfile | None:
        """Replay the project's chunks in order; same chunks always give the same profile."""
        if not chunks:
            return None
        profile = ProjectProfile(project_id=project_id)
        sample: list[str] = []
        sampled = 0
        for chunk in chunks:
            profile = merge_entities(
                profile,
                ProfileEntities(
                    characters=chunk.characters,
                    themes=chunk.themes,
                    plot_points=chunk.plot_elements,
                ),
            )
            if sampled < STYLE_SAMPLE_CHARS:
                sample.append(chunk.content)
                sampled += len(chunk.content)

        analysis = self.enricher.analyze_project("\n\n".join(sample)[:STYLE_SAMPLE_CHARS])
        profile = merge_entities(
            profile,
            ProfileEntities(
                settings=analysis.settings,
                writing_style=analysis.writing_style,
                tone_analysis=analysis.tone,
            ),
        )
        previous = self._profiles.get(project_id)
        if previous is not None and previous.title:
            profile = profile.model_copy(update={"title": previous.title})
        self._profiles[project_id] = profile
        self.invalidate(project_id)
        return profile

    def drop(self, project_id: str) -> None:
        self._profiles.pop(project_id, None)
        self.invalidate(project_id)
        self.cache.delete(CacheKeys.project_data(project_id))

    async def sync(self, project_id: str, chunks: Sequence[Chunk] = ()) -> ProjectProfile | None:
        key = CacheKeys.project_context(project_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        profile = self._profiles.get(project_id)
        if profile is None and chunks:
            profile = self.rebuild(project_id, chunks)
        if profile is None:
            profile = await self._from_store(project_id)
        if profile is not None:
            self.cache.set(key, profile, ttl=self.profile_ttl)
        return profile

    async def fetch_record(self, project_id: str) -> ProjectRecord | None:
        """Project row from the external store, cached; None when unknown."""
        if self.project_store is None:
            return None
        try:
            return await self.cache.get_or_set(
                CacheKeys.project_data(project_id),
                lambda: self.project_store.get_project(project_id),
                ttl=self.project_ttl,
            )
        except ProjectNotFoundError:
            logger.info(
                "project not found in project store",
                extra=log_context("profile_aggregator", project_id=project_id),
            )
            return None

    async def _from_store(self, project_id: str) -> ProjectProfile | None:
        record = await self.fetch_record(project_id)
        if record is None or not record.content.strip():
            return None

        analysis = self.enricher.analyze_project(record.content)
        profile = ProjectProfile(
            project_id=project_id,
            title=record.title,
            characters=analysis.characters,
            themes=analysis.themes,
            plot_points=analysis.plot_points,
            settings=analysis.settings,
            writing_style=analysis.writing_style,
            tone_analysis=analysis.tone,
        )
        self._profiles[project_id] = profile
        logger.info(
            "profile created from project store",
            extra=log_context(
                "profile_aggregator",
                project_id=project_id,
                characters=len(profile.characters),
                themes=len(profile.themes),
            ),
        )
        return profile
