from __future__ import annotations

from typing import Any

from langchain_core.language_models.base import BaseLanguageModel
from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import PromptTemplate
from langchain_core.runnables import Runnable
from pydantic import ValidationError

from ..embeddings.guard import ProviderGuard
from ..errors import MalformedResponseError
from ..utils.serialization import extract_json_object
from .models import ExtractedEntities, QueryAnalysis


class LLMChainMixin:
    """Shared chain plumbing: prompt | llm | str parser, then tolerant JSON parsing."""

    llm: BaseLanguageModel
    guard: ProviderGuard

    def _create_chain(self, template: str, input_variables: list[str]) -> Runnable:
        prompt = PromptTemplate(template=template, input_variables=input_variables)
        return prompt | self.llm | StrOutputParser()

    async def _invoke_json(self, provider: str, chain: Runnable, inputs: dict[str, Any]) -> tuple[dict[str, Any], str]:
        raw = await self.guard.call(provider, lambda: chain.ainvoke(inputs))
        text = raw if isinstance(raw, str) else str(raw)
        payload = extract_json_object(text)
        if payload is None:
            raise MalformedResponseError("Model reply was not valid JSON", provider, raw=text)
        return payload, text


class LLMMetadataExtractor(LLMChainMixin):
    """AI-assisted entity extraction for story fragments."""

    def __init__(self, llm: BaseLanguageModel, guard: ProviderGuard | None = None):
        self.llm = llm
        self.guard = guard or ProviderGuard()
        self.chain = self._create_chain(self._get_template(), ["content", "context"])

    def _get_template(self) -> str:
        return """
        You are analysing a fragment of a creative writing project.
        Extract the story metadata below and answer ONLY with a JSON object of the form:
        {{"characters": [...], "themes": [...], "emotions": [...], "plotElements": [...], "semanticTags": [...]}}

        Rules:
        - characters: named people or beings that appear (max 10)
        - themes: abstract themes such as love, betrayal, redemption (max 8)
        - emotions: emotions conveyed (max 6)
        - plotElements: conflict, revelation, journey, climax and similar (max 8)
        - semanticTags: genre and style descriptors (max 10)
        - every item must be shorter than 50 characters

        Known project context: {context}

        Fragment:
        {content}
        """.strip()

    async def extract_metadata(self, text: str, context_hint: str = "") -> ExtractedEntities:
        payload, raw = await self._invoke_json(
            "extract_metadata",
            self.chain,
            {"content": text, "context": context_hint or "none"},
        )
        try:
            return ExtractedEntities.model_validate(payload)
        except ValidationError as e:
            raise MalformedResponseError(
                "Model reply did not match the metadata schema",
                "extract_metadata",
                original_error=e,
                raw=raw,
            ) from e


class LLMQueryAnalyzer(LLMChainMixin):
    """Classifies search queries into an intent plus salient entities."""

    def __init__(self, llm: BaseLanguageModel, guard: ProviderGuard | None = None):
        self.llm = llm
        self.guard = guard or ProviderGuard()
        self.chain = self._create_chain(self._get_template(), ["query"])

    def _get_template(self) -> str:
        return """
        Analyse this search query from a writer looking through their own project.
        Answer ONLY with JSON:
        {{"intent": "character|plot|theme|setting|dialogue|general", "entities": [...], "themes": [...], "characters": [...]}}

        Query: {query}
        """.strip()

    async def analyze(self, query: str) -> QueryAnalysis:
        payload, raw = await self._invoke_json("analyze_query", self.chain, {"query": query})
        try:
            return QueryAnalysis.model_validate(payload)
        except ValidationError as e:
            raise MalformedResponseError(
                "Model reply did not match the query schema",
                "analyze_query",
                original_error=e,
                raw=raw,
            ) from e
