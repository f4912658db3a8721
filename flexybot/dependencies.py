"""
FastAPI dependency wiring.
Each collaborator is built once from settings; tests override these functions.
"""
from functools import lru_cache

from fastapi import Depends
from openai import OpenAI

from .config import Settings, get_settings
from .embedding import Embedder, build_embedder
from .fetcher import WebpageFetcher
from .ingestion import IngestionPipeline
from .retrieval import Retriever
from .stores import ChunkStore, build_store


@lru_cache()
def get_embedder() -> Embedder:
    return build_embedder(get_settings())


@lru_cache()
def get_store() -> ChunkStore:
    return build_store(get_settings())


@lru_cache()
def get_fetcher() -> WebpageFetcher:
    settings = get_settings()
    return WebpageFetcher(timeout=settings.fetch_timeout, max_redirects=settings.fetch_max_redirects)


@lru_cache()
def get_chat_client() -> OpenAI:
    settings = get_settings()
    if not settings.openai_api_key:
        raise RuntimeError("OPENAI_API_KEY is not set. Put it in env or .env (server-side only).")
    return OpenAI(api_key=settings.openai_api_key, timeout=settings.embedding_timeout)


def get_pipeline(
    settings: Settings = Depends(get_settings),
    embedder: Embedder = Depends(get_embedder),
    store: ChunkStore = Depends(get_store),
    fetcher: WebpageFetcher = Depends(get_fetcher),
) -> IngestionPipeline:
    return IngestionPipeline(
        embedder,
        store,
        fetcher=fetcher,
        max_chunk_size=settings.chunk_size,
        overlap=settings.chunk_overlap,
        max_concurrency=settings.ingest_concurrency,
    )


def get_retriever(
    embedder: Embedder = Depends(get_embedder),
    store: ChunkStore = Depends(get_store),
) -> Retriever:
    return Retriever(embedder, store)
