"""
Tenant-scoped retrieval of stored chunks for prompt grounding.
"""
from dataclasses import dataclass, field
from time import perf_counter
from typing import List, Optional, Union

from .embedding import Embedder
from .errors import EmbeddingError, StorageError, ValidationError
from .logging_config import logger
from .schemas import UNTITLED, RetrievedChunk, canonical_id
from .stores import ChunkStore

DEFAULT_LIMIT = 5
DEFAULT_SIMILARITY_THRESHOLD = 0.7


@dataclass(frozen=True)
class RetrievalOk:
    chunks: List[RetrievedChunk] = field(default_factory=list)
    ok = True

    def chunks_or_empty(self) -> List[RetrievedChunk]:
        return self.chunks


@dataclass(frozen=True)
class RetrievalErr:
    """Retrieval failed; callers normally treat this as "no context available"."""

    reason: str  # "embedding" or "storage"
    error: Exception
    ok = False

    def chunks_or_empty(self) -> List[RetrievedChunk]:
        return []


RetrievalResult = Union[RetrievalOk, RetrievalErr]


class Retriever:
    """
    Embeds a query and searches a tenant's chunks.

    Embedding and storage failures are returned as RetrievalErr instead of
    raised, so a broken knowledge base never blocks a chat response.
    """

    def __init__(self, embedder: Embedder, store: ChunkStore):
        if embedder.dimensions != store.dimensions:
            raise ValueError(
                f"Embedder produces {embedder.dimensions}-dimensional vectors "
                f"but the store expects {store.dimensions}"
            )
        self.embedder = embedder
        self.store = store

    def retrieve(
        self,
        query: str,
        organization_id: str,
        chatbot_id: Optional[str] = None,
        limit: int = DEFAULT_LIMIT,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    ) -> RetrievalResult:
        """
        Return the best matching chunks for a query, best first.

        Raises:
            ValidationError: Missing tenant, blank query or out-of-range
                limit/threshold. Checked before any network call.
        """
        organization_id = canonical_id(organization_id)
        chatbot_id = canonical_id(chatbot_id)
        if organization_id is None:
            raise ValidationError("organization_id is required")
        if not query or not query.strip():
            raise ValidationError("query must not be empty")
        if limit < 1:
            raise ValidationError(f"limit must be at least 1, got {limit}")
        if not 0.0 <= similarity_threshold <= 1.0:
            raise ValidationError(f"similarity_threshold must be between 0 and 1, got {similarity_threshold}")

        log = logger.bind(organization_id=organization_id, chatbot_id=chatbot_id)
        t = perf_counter()

        try:
            query_vector = self.embedder.embed(query)
        except EmbeddingError as e:
            log.warning("Retrieval degraded: query embedding failed", error=str(e))
            return RetrievalErr(reason="embedding", error=e)

        try:
            matches = self.store.query(
                query_vector,
                organization_id=organization_id,
                chatbot_id=chatbot_id,
                threshold=similarity_threshold,
                limit=limit,
            )
        except StorageError as e:
            log.warning("Retrieval degraded: similarity search failed", error=str(e))
            return RetrievalErr(reason="storage", error=e)

        # The store filters already; re-check so a misbehaving backend cannot leak rows.
        kept = [
            m for m in matches
            if m.organization_id == organization_id
            and (chatbot_id is None or m.chatbot_id == chatbot_id)
            and m.similarity >= similarity_threshold
        ]
        if len(kept) != len(matches):
            log.error("Store returned out-of-scope rows", returned=len(matches), kept=len(kept))

        kept.sort(key=lambda m: m.similarity, reverse=True)
        chunks = [
            RetrievedChunk(
                id=m.id,
                content=m.content,
                title=m.title or UNTITLED,
                metadata=m.metadata,
                similarity=m.similarity,
            )
            for m in kept[:limit]
        ]

        log.info(
            "Retrieved chunks",
            count=len(chunks),
            best=round(chunks[0].similarity, 3) if chunks else None,
            ms=round((perf_counter() - t) * 1000, 2),
        )
        return RetrievalOk(chunks=chunks)

    def retrieve_documents(self, query: str, organization_id: str, **kwargs) -> List[RetrievedChunk]:
        """Fail-open convenience wrapper: errors become an empty list."""
        return self.retrieve(query, organization_id, **kwargs).chunks_or_empty()
