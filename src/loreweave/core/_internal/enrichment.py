from __future__ import annotations

import logging
import time

from ...analysis.extractors import RuleBasedExtractor, extract_characters, parse_labelled_lines
from ...analysis.llm_extractor import LLMQueryAnalyzer
from ...analysis.models import ExtractedEntities, ProjectAnalysis, QueryAnalysis
from ...cache import CacheKeys, TTLCache, generate_key
from ...errors import MalformedResponseError, ProviderError, is_degrading
from ...store.logging import elapsed_ms, log_context
from ..models import MetadataBundle, ProjectProfile, bounded_unique
from ..protocols import MetadataExtractor

logger = logging.getLogger(__name__)

PLACEHOLDER_TAG = "unanalyzed"


def profile_signature(profile: ProjectProfile | None) -> str:
    """Changes whenever the entities that influence extraction change."""
    if profile is None:
        return ""
    return generate_key(sorted(c.lower() for c in profile.characters), sorted(t.lower() for t in profile.themes))


def context_hint(profile: ProjectProfile | None) -> str:
    if profile is None:
        return ""
    parts = []
    if profile.characters:
        parts.append(f"known characters: {', '.join(profile.characters)}")
    if profile.themes:
        parts.append(f"known themes: {', '.join(profile.themes)}")
    return "; ".join(parts)


class ContentEnricher:
    """
    Turns raw text into a MetadataBundle.

    The optional AI extractor is tried first; rate limits, timeouts and missing
    backends fall back to rule-based extraction, and malformed replies get a
    line-by-line parse before that. `enrich` never raises.
    """

    def __init__(
        self,
        cache: TTLCache,
        extractor: MetadataExtractor | None = None,
        rules: RuleBasedExtractor | None = None,
        query_analyzer: LLMQueryAnalyzer | None = None,
        *,
        analysis_ttl: float = 1800.0,
        fallback_ttl: float = 900.0,
    ):
        self.cache = cache
        self.extractor = extractor
        self.rules = rules or RuleBasedExtractor()
        self.query_analyzer = query_analyzer
        self.analysis_ttl = analysis_ttl
        self.fallback_ttl = fallback_ttl

    async def enrich(self, content: str, profile: ProjectProfile | None = None) -> MetadataBundle:
        key = CacheKeys.analysis(
            content, profile.project_id if profile else None, profile_signature(profile)
        )
        bundle = await self.cache.get_or_set(
            key,
            lambda: self._analyze_safely(content, profile),
            ttl=self._ttl_for,
        )
        return bundle.model_copy(deep=True)

    def _ttl_for(self, bundle: MetadataBundle) -> float:
        # Degraded results expire sooner so the AI path gets another chance
        if self.extractor is not None and bundle.source != "ai":
            return self.fallback_ttl
        return self.analysis_ttl

    async def _analyze_safely(self, content: str, profile: ProjectProfile | None) -> MetadataBundle:
        started = time.perf_counter()
        try:
            bundle = await self._analyze(content, profile)
        except Exception:
            logger.exception("enrichment failed, using placeholder metadata")
            bundle = MetadataBundle(semantic_tags=[PLACEHOLDER_TAG], source="placeholder")
        logger.debug(
            "enrich done",
            extra=log_context(
                "content_enricher",
                project_id=profile.project_id if profile else None,
                duration_ms=elapsed_ms(started),
                source=bundle.source,
            ),
        )
        return bundle

    async def _analyze(self, content: str, profile: ProjectProfile | None) -> MetadataBundle:
        if self.extractor is None:
            return self.rules.extract(content, profile)

        try:
            entities = await self.extractor.extract_metadata(content, context_hint(profile))
            source = "ai"
        except MalformedResponseError as e:
            entities = parse_labelled_lines(e.raw or "")
            if entities is None:
                logger.warning("AI metadata unparseable, using rule-based extraction")
                return self.rules.extract(content, profile)
            source = "line"
        except ProviderError as e:
            logger.log(
                logging.WARNING if is_degrading(e) else logging.ERROR,
                "AI metadata unavailable (%s), using rule-based extraction",
                e,
            )
            return self.rules.extract(content, profile)
        except Exception:
            logger.exception("AI metadata extraction failed, using rule-based extraction")
            return self.rules.extract(content, profile)

        if entities.is_empty():
            return self.rules.extract(content, profile)
        return self.rules.build_bundle(content, self._with_known_characters(content, entities, profile), source=source)

    @staticmethod
    def _with_known_characters(
        content: str, entities: ExtractedEntities, profile: ProjectProfile | None
    ) -> ExtractedEntities:
        if profile is None or not profile.characters:
            return entities
        # Profile characters are already validated, so a single mention is enough
        known = extract_characters(content, profile.characters)
        return entities.model_copy(
            update={"characters": bounded_unique([*known, *entities.characters])}
        )

    def analyze_project(self, content: str) -> ProjectAnalysis:
        return self.rules.analyze_project(content)

    async def analyze_query(self, query: str, profile: ProjectProfile | None = None) -> QueryAnalysis:
        """Intent and entities for a search query; AI when configured, rules otherwise."""
        known_characters = profile.characters if profile else ()
        known_themes = profile.themes if profile else ()
        if self.query_analyzer is None:
            return self.rules.analyze_query(query, known_characters, known_themes)

        async def produce() -> QueryAnalysis:
            try:
                return await self.query_analyzer.analyze(query)
            except ProviderError as e:
                logger.warning("AI query analysis unavailable (%s), using rules", e)
            except Exception:
                logger.exception("AI query analysis failed, using rules")
            return self.rules.analyze_query(query, known_characters, known_themes)

        return await self.cache.get_or_set(
            CacheKeys.query_analysis(query, profile_signature(profile)),
            produce,
            ttl=self.fallback_ttl,
        )
