"""
Embedding providers.
The same provider and model must be used at ingestion and query time.
"""
import re
from typing import List, Optional, Protocol

import numpy as np
import openai
from openai import OpenAI

from .config import Settings
from .errors import EmbeddingError
from .logging_config import logger

MAX_INPUT_CHARS = 8000
_WS_RE = re.compile(r"\s+")


class Embedder(Protocol):
    model: str
    dimensions: int

    def embed(self, text: str) -> List[float]:
        ...


def preprocess_for_embedding(text: str) -> str:
    """Flatten whitespace and truncate to the provider's input limit."""
    return _WS_RE.sub(" ", text).strip()[:MAX_INPUT_CHARS]


def _check_dimensions(vector: List[float], expected: int, model: str) -> List[float]:
    if len(vector) != expected:
        raise EmbeddingError(
            f"Embedding model {model} returned {len(vector)} dimensions, expected {expected}"
        )
    return vector


class OpenAIEmbedder:
    """Hosted embeddings through the OpenAI API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "text-embedding-ada-002",
        dimensions: int = 1536,
        timeout: float = 30.0,
        client: Optional[OpenAI] = None,
    ):
        if client is None:
            if not api_key:
                raise RuntimeError("OPENAI_API_KEY is not set. Put it in env or .env (server-side only).")
            # Retries are the caller's decision, not the client's.
            client = OpenAI(api_key=api_key, timeout=timeout, max_retries=0)
        self.client = client
        self.model = model
        self.dimensions = dimensions

    def embed(self, text: str) -> List[float]:
        cleaned = preprocess_for_embedding(text)
        if not cleaned:
            raise EmbeddingError("Cannot embed empty text")
        try:
            response = self.client.embeddings.create(model=self.model, input=cleaned)
        except openai.OpenAIError as e:
            logger.error("OpenAI embedding request failed", model=self.model, error=str(e))
            raise EmbeddingError(f"Embedding request failed: {e}") from e

        if not response.data:
            raise EmbeddingError("Embedding response contained no data")
        return _check_dimensions(list(response.data[0].embedding), self.dimensions, self.model)


class SentenceTransformerEmbedder:
    """Local sentence-transformers model, loaded on first use."""

    def __init__(self, model: str = "sentence-transformers/all-MiniLM-L6-v2", dimensions: int = 384):
        self.model = model
        self.dimensions = dimensions
        self._model = None

    def preload(self):
        """Load and warm up the model to avoid a first-request delay."""
        if self._model is None:
            from sentence_transformers import SentenceTransformer

            logger.info("Loading embedding model", model=self.model)
            self._model = SentenceTransformer(
                self.model,
                tokenizer_kwargs={"clean_up_tokenization_spaces": False},
            )
            self._model.encode(["test"], normalize_embeddings=True, show_progress_bar=False)
            logger.info("Embedding model loaded", model=self.model)
        return self._model

    def embed(self, text: str) -> List[float]:
        cleaned = preprocess_for_embedding(text)
        if not cleaned:
            raise EmbeddingError("Cannot embed empty text")
        try:
            model = self.preload()
            vec = model.encode([cleaned], normalize_embeddings=True, show_progress_bar=False)[0]
        except Exception as e:
            raise EmbeddingError(f"Local embedding failed: {e}") from e
        if isinstance(vec, np.ndarray):
            vec = vec.tolist()
        return _check_dimensions(list(vec), self.dimensions, self.model)


def build_embedder(settings: Settings) -> Embedder:
    """Create the embedding provider selected by configuration."""
    if settings.embedding_provider == "local":
        return SentenceTransformerEmbedder(
            model=settings.embed_model,
            dimensions=settings.embedding_dimensions,
        )
    return OpenAIEmbedder(
        api_key=settings.openai_api_key,
        model=settings.embed_model,
        dimensions=settings.embedding_dimensions,
        timeout=settings.embedding_timeout,
    )
