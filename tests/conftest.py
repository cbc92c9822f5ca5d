import re
import zlib

import pytest
from langchain_core.embeddings import Embeddings

from loreweave.configs import EngineConfig, PersistenceConfig
from loreweave.core.engine import RetrievalEngine
from loreweave.core.models import Chunk

DIMENSIONS = 1024


def bag_of_words(text: str) -> list[float]:
    """Deterministic sparse vector: one slot per hashed word."""
    vector = [0.0] * DIMENSIONS
    for word in re.findall(r"[a-z0-9]+", text.lower()):
        vector[zlib.crc32(word.encode("utf-8")) % DIMENSIONS] += 1.0
    return vector


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class BagOfWordsEmbeddings(Embeddings):
    """LangChain embeddings backed by bag_of_words."""

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [bag_of_words(text) for text in texts]

    def embed_query(self, text: str) -> list[float]:
        return bag_of_words(text)

    async def aembed_documents(self, texts: list[str]) -> list[list[float]]:
        return self.embed_documents(texts)

    async def aembed_query(self, text: str) -> list[float]:
        return self.embed_query(text)


class SwitchableEmbedder:
    """Embedder that raises `error` when one is set."""

    def __init__(self):
        self.error: Exception | None = None
        self.calls = 0

    async def embed(self, text: str) -> list[float]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return bag_of_words(text)

    async def embed_many(self, texts: list[str]) -> list[list[float]]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return [bag_of_words(text) for text in texts]


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def snapshot_path(tmp_path):
    return tmp_path / "snapshot.json"


@pytest.fixture
def engine_config(snapshot_path):
    return EngineConfig(persistence=PersistenceConfig(path=str(snapshot_path)))


@pytest.fixture
def engine(engine_config):
    """Offline engine: no embeddings, no LLM."""
    return RetrievalEngine(engine_config)


@pytest.fixture
def switchable_embedder():
    return SwitchableEmbedder()


@pytest.fixture
def make_chunk():
    def factory(content: str = "Thor raised his hammer.", **overrides) -> Chunk:
        return Chunk(content=content, **overrides)

    return factory


@pytest.fixture
def bag_embeddings():
    return BagOfWordsEmbeddings()
