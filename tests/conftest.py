"""
Shared test fixtures.

Provides: deterministic fake embedder, in-memory chunk store, pipeline and
retriever wired to them.
"""
import hashlib
import threading
import time
from typing import Dict, Iterable, List, Optional

import pytest

from flexybot.errors import EmbeddingError
from flexybot.ingestion import IngestionPipeline
from flexybot.retrieval import Retriever
from flexybot.stores import InMemoryChunkStore

DIMS = 8


class FakeEmbedder:
    """
    Deterministic embedder.

    Texts listed in ``vectors`` get that exact vector; anything else gets a
    hash-derived one. Calls whose 1-based number is in ``fail_on``, or whose
    text is in ``fail_texts``, raise EmbeddingError.
    """

    def __init__(
        self,
        dimensions: int = DIMS,
        vectors: Optional[Dict[str, List[float]]] = None,
        fail_on: Iterable[int] = (),
        fail_texts: Iterable[str] = (),
        delay: float = 0.0,
    ):
        self.model = "fake-embedding"
        self.dimensions = dimensions
        self.vectors = vectors or {}
        self.fail_on = set(fail_on)
        self.fail_texts = set(fail_texts)
        self.delay = delay
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def embed(self, text: str) -> List[float]:
        with self._lock:
            self.calls.append(text)
            call_number = len(self.calls)
        if call_number in self.fail_on or text in self.fail_texts:
            raise EmbeddingError(f"provider rejected call {call_number}")
        if self.delay:
            time.sleep(self.delay)
        if text in self.vectors:
            return list(self.vectors[text])
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [b / 255.0 + 0.01 for b in digest[: self.dimensions]]


def unit(index: int, dims: int = DIMS) -> List[float]:
    """One-hot vector; cosine similarity between different indexes is 0."""
    vec = [0.0] * dims
    vec[index] = 1.0
    return vec


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def store():
    return InMemoryChunkStore(dimensions=DIMS)


@pytest.fixture
def pipeline(embedder, store):
    return IngestionPipeline(embedder, store, max_chunk_size=50, overlap=0)


@pytest.fixture
def retriever(embedder, store):
    return Retriever(embedder, store)
