from datetime import datetime, timedelta, timezone
from typing import Dict, List

import pytest
import requests

from docrecall.config import DocRecallConfig
from docrecall.embeddings import BaseEmbeddingProvider
from docrecall.generation import BaseGenerator
from docrecall.orchestrator import create_orchestrator
from docrecall.storage import DocumentStore

DIM = 3

D1_TEXT = "Quarterly results show 12% growth."
D2_TEXT = "Quarterly results showed 12 percent growth."
D3_TEXT = "Recipe for a lemon drizzle cake with icing."

VECTORS = {
    D1_TEXT: [1.0, 0.0, 0.0],
    D2_TEXT: [0.9, 0.43589, 0.0],   # cosine 0.90 against D1
    D3_TEXT: [0.2, 0.0, 0.9798],    # cosine 0.20 against D1
}


class FakeEmbedder(BaseEmbeddingProvider):
    """Maps known texts to fixed vectors; unknown text gets a neutral vector."""

    def __init__(self, vectors: Dict[str, List[float]], dim: int = DIM):
        super().__init__("fake-embed", use_cache=False)
        self.vectors = dict(vectors)
        self._dim = dim
        self.fail = False
        self.calls = 0

    @property
    def dimension(self) -> int:
        return self._dim

    def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        self.calls += 1
        if self.fail:
            raise requests.ConnectionError("embedding server unreachable")
        return [self.vectors.get(t, [0.0, 1.0, 0.0]) for t in texts]


class FakeGenerator(BaseGenerator):
    """Counts calls and returns numbered outputs."""

    def __init__(self):
        super().__init__("fake-text", "fake-vision")
        self.fail = False
        self.text_calls = 0
        self.image_calls = 0
        self.prompts: List[str] = []

    def _complete(self, prompt: str) -> str:
        if self.fail:
            raise requests.Timeout("generation timed out")
        self.text_calls += 1
        self.prompts.append(prompt)
        return f"summary #{self.text_calls}"

    def _describe(self, prompt: str, image_b64: str) -> str:
        if self.fail:
            raise requests.Timeout("generation timed out")
        self.image_calls += 1
        return f"image description #{self.image_calls}"


class TickingClock:
    """Deterministic clock advancing one second per reading."""

    def __init__(self, start: datetime = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        self.now = self.now + timedelta(seconds=1)
        return self.now


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def store(tmp_path, clock):
    s = DocumentStore(str(tmp_path / "docrecall.db"), DIM, clock=clock)
    yield s
    s.close()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder(VECTORS)


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def config(tmp_path) -> DocRecallConfig:
    return DocRecallConfig(
        embedding_provider="hashing",
        embedding_model="fake-embed",
        embedding_dim=DIM,
        db_path=str(tmp_path / "docrecall.db"),
    )


@pytest.fixture
def orchestrator(config, embedder, generator, store):
    return create_orchestrator(config, embedder=embedder, generator=generator, store=store)
