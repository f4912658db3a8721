"""
Main FastAPI application entry point.
Responsibilities: App setup, router registration, startup hooks.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI

from . import __version__
from .config import get_settings
from .dependencies import get_embedder, get_store
from .embedding import SentenceTransformerEmbedder
from .logging_config import configure_from_settings, logger
from .routes import chat, documents
from .stores import PgVectorChunkStore


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run migrations and warm up the embedding model on startup."""
    settings = get_settings()
    configure_from_settings(settings)
    store = get_store()

    if isinstance(store, PgVectorChunkStore):
        from .db.migrations import run_sql_migrations

        logger.info("Running database migrations...")
        run_sql_migrations(store.engine, settings.embedding_dimensions)
        logger.info("Database migrations completed")

    embedder = get_embedder()
    if isinstance(embedder, SentenceTransformerEmbedder):
        logger.info("Preloading embedding model...")
        embedder.preload()

    logger.info(
        "Knowledge service ready",
        store=settings.store_backend,
        embedder=settings.embedding_provider,
        model=settings.embed_model,
    )
    yield
    logger.info("Application shutting down")


app = FastAPI(title="FlexyBot Knowledge Service", version=__version__, lifespan=lifespan)

app.include_router(documents.router)
app.include_router(chat.router)


@app.get("/api/health")
def health():
    return {"status": "ok", "version": __version__}
