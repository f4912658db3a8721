"""
Ingestion pipeline.
Drives one source from raw content to persisted, embedded chunks:
fetch (webpages) -> normalize -> chunk -> embed + store each chunk.
"""
import threading
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass
from time import perf_counter
from typing import Any, List, Mapping, Optional, Tuple, Union

import pydantic

from .chunking import DEFAULT_CHUNK_SIZE, DEFAULT_OVERLAP, check_sizes, split_document
from .embedding import Embedder
from .errors import IngestionCancelled, IngestionError, ValidationError
from .fetcher import WebpageFetcher
from .logging_config import logger
from .schemas import ChunkRecord, SourceMetadata
from .stores import ChunkStore
from .text_extraction import html_to_text, normalize

SourceLike = Union[SourceMetadata, Mapping[str, Any]]


@dataclass
class IngestionReport:
    source_title: Optional[str]
    source_url: Optional[str]
    chunks_total: int
    chunks_stored: int
    replaced: int = 0

    @property
    def ok(self) -> bool:
        return self.chunks_stored == self.chunks_total


def validate_source(source: SourceLike) -> SourceMetadata:
    """
    Coerce and validate tenant metadata.

    Raises:
        ValidationError: If the tenant id is missing or a field is malformed.
    """
    if isinstance(source, SourceMetadata):
        if not source.organization_id or not source.organization_id.strip():
            raise ValidationError("organization_id is required")
        return source
    try:
        return SourceMetadata.model_validate(dict(source or {}))
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid source metadata: {e}") from e


class IngestionPipeline:
    """
    Turns source content into stored chunks for one tenant.

    A failure embedding or storing a chunk stops processing of the remaining
    chunks and is raised to the caller. Chunks stored before the failure are
    kept; nothing is retried.
    """

    def __init__(
        self,
        embedder: Embedder,
        store: ChunkStore,
        fetcher: Optional[WebpageFetcher] = None,
        max_chunk_size: int = DEFAULT_CHUNK_SIZE,
        overlap: int = DEFAULT_OVERLAP,
        max_concurrency: int = 1,
    ):
        if embedder.dimensions != store.dimensions:
            raise ValueError(
                f"Embedder produces {embedder.dimensions}-dimensional vectors "
                f"but the store expects {store.dimensions}"
            )
        if not 0 <= overlap < max_chunk_size:
            raise ValueError("overlap must be >= 0 and smaller than max_chunk_size")
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")

        self.embedder = embedder
        self.store = store
        self.fetcher = fetcher or WebpageFetcher()
        self.max_chunk_size = max_chunk_size
        self.overlap = overlap
        self.max_concurrency = max_concurrency

    # ==================== Entry points ====================

    def ingest_text(
        self,
        content: str,
        source: SourceLike,
        *,
        is_html: bool = False,
        replace_existing: bool = True,
        max_chunk_size: Optional[int] = None,
        overlap: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> IngestionReport:
        """
        Normalize, chunk, embed and store one piece of content.

        Args:
            content: Raw text or HTML
            source: Tenant and descriptive metadata for every chunk
            is_html: Run the HTML extraction path before normalizing
            replace_existing: Delete the source's previous chunks first
            max_chunk_size: Overrides the pipeline default
            overlap: Overrides the pipeline default
            cancel_event: Once set, no further chunk is started

        Returns:
            IngestionReport for the source

        Raises:
            ValidationError: Bad metadata, bad chunk sizes or no text
            EmbeddingError, StorageError: A chunk failed; remaining chunks skipped
            IngestionCancelled: cancel_event was set mid-way
        """
        source = validate_source(source)
        size, overlap = self._resolve_sizes(max_chunk_size, overlap)
        text = normalize(content or "", is_html=is_html)
        return self._ingest_normalized(
            text,
            source,
            replace_existing=replace_existing,
            max_chunk_size=size,
            overlap=overlap,
            cancel_event=cancel_event,
        )

    def ingest_webpage(
        self,
        url: str,
        source: SourceLike,
        *,
        replace_existing: bool = True,
        max_chunk_size: Optional[int] = None,
        overlap: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> IngestionReport:
        """
        Fetch a webpage and ingest its text.

        Raises:
            FetchError: Network failure or non-2xx status; nothing is stored
            plus everything ingest_text raises
        """
        source = validate_source(source)
        source = source.model_copy(update={
            "type": "webpage",
            "source_url": url,
            "title": source.title or url,
        })
        size, overlap = self._resolve_sizes(max_chunk_size, overlap)

        html = self.fetcher.fetch(url)
        text = html_to_text(html)
        return self._ingest_normalized(
            text,
            source,
            replace_existing=replace_existing,
            max_chunk_size=size,
            overlap=overlap,
            cancel_event=cancel_event,
        )

    # ==================== Internals ====================

    def _resolve_sizes(self, max_chunk_size: Optional[int], overlap: Optional[int]) -> Tuple[int, int]:
        """Apply the pipeline defaults to per-call overrides and validate them before any network call."""
        size = self.max_chunk_size if max_chunk_size is None else max_chunk_size
        overlap = self.overlap if overlap is None else overlap
        check_sizes(size, overlap)
        return size, overlap

    def _ingest_normalized(
        self,
        text: str,
        source: SourceMetadata,
        replace_existing: bool,
        max_chunk_size: int,
        overlap: int,
        cancel_event: Optional[threading.Event],
    ) -> IngestionReport:
        log = logger.bind(
            organization_id=source.organization_id,
            chatbot_id=source.chatbot_id,
            title=source.title,
            source_url=source.source_url,
        )

        chunks = split_document(text, max_chunk_size=max_chunk_size, overlap=overlap)
        if not chunks:
            raise ValidationError("Source contains no text after normalization")

        t = perf_counter()
        replaced = 0
        if replace_existing:
            if source.source_url or source.title:
                replaced = self.store.delete_by_source(
                    source.organization_id,
                    source_url=source.source_url,
                    title=source.title,
                    chatbot_id=source.chatbot_id,
                )
            else:
                log.warning("Source has no url or title; previous chunks cannot be replaced")

        log.info("Ingesting source", chunks=len(chunks), replaced=replaced)

        if self.max_concurrency > 1:
            stored = self._process_concurrently(chunks, source, cancel_event, log)
        else:
            stored = self._process_sequentially(chunks, source, cancel_event, log)

        log.info(
            "Source ingested",
            chunks=stored,
            ms=round((perf_counter() - t) * 1000, 2),
        )
        return IngestionReport(
            source_title=source.title,
            source_url=source.source_url,
            chunks_total=len(chunks),
            chunks_stored=stored,
            replaced=replaced,
        )

    def _store_chunk(self, index: int, content: str, total: int, source: SourceMetadata) -> None:
        vector = self.embedder.embed(content)
        self.store.insert(ChunkRecord(
            content=content,
            embedding=vector,
            organization_id=source.organization_id,
            chatbot_id=source.chatbot_id,
            title=source.title,
            source_url=source.source_url,
            type=source.type,
            metadata={**source.metadata, "chunk_index": index, "chunk_count": total},
        ))

    def _process_sequentially(self, chunks: List[str], source, cancel_event, log) -> int:
        stored = 0
        for index, content in enumerate(chunks):
            if cancel_event is not None and cancel_event.is_set():
                log.warning("Ingestion cancelled", stored=stored, next_chunk=index)
                raise IngestionCancelled("Ingestion cancelled", chunks_stored=stored, chunk_index=index)
            try:
                self._store_chunk(index, content, len(chunks), source)
            except IngestionError as e:
                e.chunks_stored = stored
                e.chunk_index = index
                log.error("Chunk failed; remaining chunks skipped",
                          chunk_index=index, stored=stored, error=str(e))
                raise
            stored += 1
        return stored

    def _process_concurrently(self, chunks: List[str], source, cancel_event, log) -> int:
        """
        Fan chunk processing out with at most ``max_concurrency`` in flight.

        After the first failure or a cancellation nothing new is submitted;
        chunks already in flight are allowed to finish.
        """
        stored = 0
        failure: Optional[BaseException] = None
        failed_index: Optional[int] = None
        cancelled_at: Optional[int] = None
        pending = {}
        remaining = iter(enumerate(chunks))

        with ThreadPoolExecutor(max_workers=self.max_concurrency,
                                thread_name_prefix="ingest") as pool:
            while True:
                while failure is None and cancelled_at is None and len(pending) < self.max_concurrency:
                    try:
                        index, content = next(remaining)
                    except StopIteration:
                        break
                    if cancel_event is not None and cancel_event.is_set():
                        cancelled_at = index
                        break
                    future = pool.submit(self._store_chunk, index, content, len(chunks), source)
                    pending[future] = index

                if not pending:
                    break

                done, _ = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    index = pending.pop(future)
                    exc = future.exception()
                    if exc is None:
                        stored += 1
                    elif failure is None:
                        failure, failed_index = exc, index
                    else:
                        log.error("Additional chunk failure", chunk_index=index, error=str(exc))

        if failure is not None:
            log.error("Chunk failed; remaining chunks skipped",
                      chunk_index=failed_index, stored=stored, error=str(failure))
            if isinstance(failure, IngestionError):
                failure.chunks_stored = stored
                failure.chunk_index = failed_index
            raise failure
        if cancelled_at is not None:
            log.warning("Ingestion cancelled", stored=stored, next_chunk=cancelled_at)
            raise IngestionCancelled("Ingestion cancelled", chunks_stored=stored, chunk_index=cancelled_at)
        return stored
