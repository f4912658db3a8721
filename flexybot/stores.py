"""
Chunk stores with tenant-scoped vector search.

Every operation takes the tenant id explicitly. Chunks are only ever inserted
or deleted by source; there is no update path.
"""
import threading
from collections import OrderedDict
from time import perf_counter
from typing import Any, Dict, List, Optional, Protocol

import numpy as np
from pgvector.sqlalchemy import Vector
from sqlalchemy import bindparam
from sqlalchemy import text as sa_text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .config import Settings
from .errors import StorageError
from .logging_config import logger
from .schemas import ChunkMatch, ChunkRecord

TABLE_NAME = "documents"
MATCH_FUNCTION = "match_documents"

# Keeps the HNSW scan going until enough rows pass the tenant filter (pgvector 0.8+).
ITERATIVE_SCAN_SQL = "SET LOCAL hnsw.iterative_scan = relaxed_order"


class ChunkStore(Protocol):
    dimensions: int

    def insert(self, record: ChunkRecord) -> None:
        ...

    def query(
        self,
        embedding: List[float],
        organization_id: str,
        chatbot_id: Optional[str] = None,
        threshold: float = 0.7,
        limit: int = 5,
    ) -> List[ChunkMatch]:
        ...

    def delete_by_source(
        self,
        organization_id: str,
        source_url: Optional[str] = None,
        title: Optional[str] = None,
        chatbot_id: Optional[str] = None,
    ) -> int:
        ...

    def list_sources(self, organization_id: str, chatbot_id: Optional[str] = None) -> List[Dict[str, Any]]:
        ...


def _check_vector(embedding: List[float], dimensions: int):
    if len(embedding) != dimensions:
        raise StorageError(
            f"Embedding has {len(embedding)} dimensions, store expects {dimensions}; refusing to persist"
        )


def _require_tenant(organization_id: str):
    if not organization_id:
        raise StorageError("organization_id is required for every store operation")


def _require_source_key(source_url: Optional[str], title: Optional[str]):
    if not source_url and not title:
        raise StorageError("A source is identified by source_url or title; neither was given")


def _to_matches(rows) -> List[ChunkMatch]:
    """
    Map store rows to matches.

    Rows without a tenant id are dropped, never attributed to the caller.
    A malformed row fails the whole query with StorageError.
    """
    matches = []
    for r in rows:
        try:
            if not r.get("organization_id"):
                logger.error("Dropping match row without organization_id", id=r.get("id"))
                continue
            matches.append(ChunkMatch(
                id=str(r["id"]),
                organization_id=r["organization_id"],
                chatbot_id=r.get("chatbot_id"),
                content=r["content"],
                title=r.get("title"),
                metadata=r.get("metadata") or {},
                similarity=float(r["similarity"]),
            ))
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise StorageError(f"Malformed similarity row: {e!r}") from e
    return matches


# ==================== pgvector ====================

class PgVectorChunkStore:
    """Postgres + pgvector through SQLAlchemy."""

    def __init__(self, engine: Engine, dimensions: int = 1536):
        self.engine = engine
        self.dimensions = dimensions

        self._insert_sql = sa_text(f"""
            INSERT INTO {TABLE_NAME}(
                id, organization_id, chatbot_id, content, embedding,
                title, source_url, type, metadata, created_at, updated_at
            )
            VALUES(
                :id, :organization_id, :chatbot_id, :content, :embedding,
                :title, :source_url, :type, :metadata, :created_at, :updated_at
            )
        """).bindparams(
            bindparam("embedding", type_=Vector(dimensions)),
            bindparam("metadata", type_=JSONB),
        )

        self._query_sql = sa_text(f"""
            SELECT
                id,
                organization_id,
                chatbot_id,
                content,
                title,
                metadata,
                1 - (embedding <=> :qv) AS similarity
            FROM {TABLE_NAME}
            WHERE organization_id = :org
              AND (CAST(:bot AS TEXT) IS NULL OR chatbot_id = :bot)
              AND 1 - (embedding <=> :qv) >= :threshold
            ORDER BY embedding <=> :qv
            LIMIT :k
        """).bindparams(bindparam("qv", type_=Vector(dimensions)))

    def insert(self, record: ChunkRecord) -> None:
        _require_tenant(record.organization_id)
        _check_vector(record.embedding, self.dimensions)
        try:
            with self.engine.begin() as conn:
                conn.execute(self._insert_sql, record.model_dump())
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to insert chunk: {e}") from e

    def query(self, embedding, organization_id, chatbot_id=None, threshold=0.7, limit=5) -> List[ChunkMatch]:
        _require_tenant(organization_id)
        _check_vector(embedding, self.dimensions)
        t = perf_counter()
        try:
            with self.engine.begin() as conn:
                conn.execute(sa_text(ITERATIVE_SCAN_SQL))
                rows = conn.execute(
                    self._query_sql,
                    {"qv": embedding, "org": organization_id, "bot": chatbot_id,
                     "threshold": threshold, "k": limit},
                ).mappings().all()
        except SQLAlchemyError as e:
            raise StorageError(f"Similarity query failed: {e}") from e
        logger.debug("pgvector query finished", ms=round((perf_counter() - t) * 1000, 2), rows=len(rows))
        return _to_matches(rows)

    def delete_by_source(self, organization_id, source_url=None, title=None, chatbot_id=None) -> int:
        _require_tenant(organization_id)
        _require_source_key(source_url, title)
        key_clause = "source_url = :key" if source_url else "source_url IS NULL AND title = :key"
        bot_clause = "chatbot_id = :bot" if chatbot_id else "chatbot_id IS NULL"
        sql = sa_text(f"DELETE FROM {TABLE_NAME} WHERE organization_id = :org AND {bot_clause} AND {key_clause}")
        params = {"org": organization_id, "key": source_url or title}
        if chatbot_id:
            params["bot"] = chatbot_id
        try:
            with self.engine.begin() as conn:
                return conn.execute(sql, params).rowcount or 0
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to delete source chunks: {e}") from e

    def list_sources(self, organization_id, chatbot_id=None) -> List[Dict[str, Any]]:
        _require_tenant(organization_id)
        sql = sa_text(f"""
            SELECT title,
                   source_url,
                   type,
                   chatbot_id,
                   COUNT(*) AS chunks,
                   MAX(created_at) AS last_ingested_at
            FROM {TABLE_NAME}
            WHERE organization_id = :org
              AND (CAST(:bot AS TEXT) IS NULL OR chatbot_id = :bot)
            GROUP BY title, source_url, type, chatbot_id
            ORDER BY last_ingested_at DESC
        """)
        try:
            with self.engine.begin() as conn:
                rows = conn.execute(sql, {"org": organization_id, "bot": chatbot_id}).mappings().all()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list sources: {e}") from e
        return [dict(r) for r in rows]


# ==================== Supabase ====================

class SupabaseChunkStore:
    """Supabase table for inserts and the match_documents RPC for search."""

    def __init__(self, client, dimensions: int = 1536, table_name: str = TABLE_NAME):
        self.client = client
        self.dimensions = dimensions
        self.table_name = table_name

    def insert(self, record: ChunkRecord) -> None:
        _require_tenant(record.organization_id)
        _check_vector(record.embedding, self.dimensions)
        row = record.model_dump(mode="json")
        try:
            self.client.table(self.table_name).insert(row).execute()
        except Exception as e:
            raise StorageError(f"Failed to insert chunk: {e}") from e

    def query(self, embedding, organization_id, chatbot_id=None, threshold=0.7, limit=5) -> List[ChunkMatch]:
        _require_tenant(organization_id)
        _check_vector(embedding, self.dimensions)
        params = {
            "query_embedding": list(embedding),
            "match_threshold": threshold,
            "match_count": limit,
            "filter_organization_id": organization_id,
            "filter_chatbot_id": chatbot_id,
        }
        try:
            rows = self.client.rpc(MATCH_FUNCTION, params).execute().data or []
        except Exception as e:
            raise StorageError(f"Similarity query failed: {e}") from e
        return _to_matches(rows)

    def delete_by_source(self, organization_id, source_url=None, title=None, chatbot_id=None) -> int:
        _require_tenant(organization_id)
        _require_source_key(source_url, title)
        q = self.client.table(self.table_name).delete().eq("organization_id", organization_id)
        q = q.eq("chatbot_id", chatbot_id) if chatbot_id else q.is_("chatbot_id", "null")
        if source_url:
            q = q.eq("source_url", source_url)
        else:
            q = q.is_("source_url", "null").eq("title", title)
        try:
            deleted = q.execute().data or []
        except Exception as e:
            raise StorageError(f"Failed to delete source chunks: {e}") from e
        return len(deleted)

    def list_sources(self, organization_id, chatbot_id=None) -> List[Dict[str, Any]]:
        _require_tenant(organization_id)
        q = (
            self.client.table(self.table_name)
            .select("title, source_url, type, chatbot_id, created_at")
            .eq("organization_id", organization_id)
        )
        if chatbot_id:
            q = q.eq("chatbot_id", chatbot_id)
        try:
            rows = q.execute().data or []
        except Exception as e:
            raise StorageError(f"Failed to list sources: {e}") from e
        return _group_sources(rows)


# ==================== In-memory ====================

class InMemoryChunkStore:
    """Process-local store using numpy cosine similarity. For development and tests."""

    def __init__(self, dimensions: int = 1536):
        self.dimensions = dimensions
        self._records: List[ChunkRecord] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def all(self, organization_id: str) -> List[ChunkRecord]:
        with self._lock:
            return [r for r in self._records if r.organization_id == organization_id]

    def insert(self, record: ChunkRecord) -> None:
        _require_tenant(record.organization_id)
        _check_vector(record.embedding, self.dimensions)
        with self._lock:
            self._records.append(record)

    def query(self, embedding, organization_id, chatbot_id=None, threshold=0.7, limit=5) -> List[ChunkMatch]:
        _require_tenant(organization_id)
        _check_vector(embedding, self.dimensions)
        with self._lock:
            candidates = [
                r for r in self._records
                if r.organization_id == organization_id and (chatbot_id is None or r.chatbot_id == chatbot_id)
            ]
        if not candidates:
            return []

        q = np.asarray(embedding, dtype=float)
        matrix = np.asarray([r.embedding for r in candidates], dtype=float)
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(q)
        with np.errstate(divide="ignore", invalid="ignore"):
            scores = np.where(norms > 0, matrix @ q / norms, 0.0)

        ranked = sorted(zip(candidates, scores), key=lambda pair: pair[1], reverse=True)
        return [
            ChunkMatch(
                id=r.id,
                organization_id=r.organization_id,
                chatbot_id=r.chatbot_id,
                content=r.content,
                title=r.title,
                metadata=dict(r.metadata),
                similarity=float(score),
            )
            for r, score in ranked
            if score >= threshold
        ][:limit]

    def delete_by_source(self, organization_id, source_url=None, title=None, chatbot_id=None) -> int:
        _require_tenant(organization_id)
        _require_source_key(source_url, title)

        def matches(r: ChunkRecord) -> bool:
            if r.organization_id != organization_id or r.chatbot_id != chatbot_id:
                return False
            if source_url:
                return r.source_url == source_url
            return r.source_url is None and r.title == title

        with self._lock:
            before = len(self._records)
            self._records = [r for r in self._records if not matches(r)]
            return before - len(self._records)

    def list_sources(self, organization_id, chatbot_id=None) -> List[Dict[str, Any]]:
        _require_tenant(organization_id)
        rows = [
            r.model_dump(include={"title", "source_url", "type", "chatbot_id", "created_at"})
            for r in self.all(organization_id)
            if chatbot_id is None or r.chatbot_id == chatbot_id
        ]
        return _group_sources(rows)


def _group_sources(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Aggregate chunk rows into one entry per source with a chunk count."""
    grouped: "OrderedDict[tuple, Dict[str, Any]]" = OrderedDict()
    for row in rows:
        key = (row.get("title"), row.get("source_url"), row.get("type"), row.get("chatbot_id"))
        entry = grouped.get(key)
        if entry is None:
            entry = {
                "title": row.get("title"),
                "source_url": row.get("source_url"),
                "type": row.get("type"),
                "chatbot_id": row.get("chatbot_id"),
                "chunks": 0,
                "last_ingested_at": row.get("created_at"),
            }
            grouped[key] = entry
        entry["chunks"] += 1
        created = row.get("created_at")
        if created is not None and (entry["last_ingested_at"] is None or str(created) > str(entry["last_ingested_at"])):
            entry["last_ingested_at"] = created
    return list(grouped.values())


# ==================== Factory ====================

def build_store(settings: Settings) -> ChunkStore:
    """
    Create the chunk store selected by STORE_BACKEND.

    Raises:
        ValueError: If STORE_BACKEND is invalid
    """
    backend = settings.store_backend

    if backend == "pgvector":
        from .db import create_db_engine

        logger.info("Creating pgvector chunk store")
        engine = create_db_engine(settings.database_url, statement_timeout=settings.store_timeout)
        return PgVectorChunkStore(engine, dimensions=settings.embedding_dimensions)

    if backend == "supabase":
        from supabase import ClientOptions, create_client

        logger.info("Creating Supabase chunk store", url=settings.supabase_url)
        client = create_client(
            settings.supabase_url,
            settings.supabase_key,
            options=ClientOptions(postgrest_client_timeout=settings.store_timeout),
        )
        return SupabaseChunkStore(client, dimensions=settings.embedding_dimensions)

    if backend == "memory":
        logger.info("Creating in-memory chunk store")
        return InMemoryChunkStore(dimensions=settings.embedding_dimensions)

    raise ValueError(f"Invalid STORE_BACKEND: {backend}. Must be 'pgvector', 'supabase' or 'memory'.")
