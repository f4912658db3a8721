"""
Error taxonomy for ingestion and retrieval.
"""
from typing import Optional


class FlexyBotError(Exception):
    """Base class for every error raised by the knowledge service."""


class ValidationError(FlexyBotError):
    """Malformed input, rejected before any network call is made."""


class FetchError(FlexyBotError):
    """Webpage retrieval failed (network error or non-2xx status)."""

    def __init__(self, message: str, url: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class IngestionError(FlexyBotError):
    """
    Raised when chunk processing stops part way through a source.

    ``chunks_stored`` counts the chunks already committed before the failure;
    they are kept, not rolled back.
    """

    def __init__(self, message: str, chunks_stored: int = 0, chunk_index: Optional[int] = None):
        super().__init__(message)
        self.chunks_stored = chunks_stored
        self.chunk_index = chunk_index


class EmbeddingError(IngestionError):
    """Embedding provider call failed (quota, auth, bad input, timeout)."""


class StorageError(IngestionError):
    """Persistence or similarity-query failure."""


class IngestionCancelled(IngestionError):
    """The caller cancelled ingestion; no further chunks were started."""
