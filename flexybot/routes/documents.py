"""
Knowledge-base API routes.
Handles document upload, text and webpage ingestion, source listing and deletion.
"""
import os
import shutil
import tempfile
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile

from ..dependencies import get_pipeline, get_store
from ..errors import (
    FetchError,
    FlexyBotError,
    IngestionCancelled,
    IngestionError,
    ValidationError,
)
from ..ingestion import IngestionPipeline, IngestionReport
from ..logging_config import logger
from ..schemas import IngestResponse, SourceMetadata, TextIngestBody, WebpageIngestBody, canonical_id
from ..stores import ChunkStore
from ..text_extraction import read_any

router = APIRouter(prefix="/api", tags=["knowledge"])

# Upload limits
MAX_FILES_PER_UPLOAD = 5
MAX_FILE_SIZE_BYTES = 50 * 1024 * 1024  # 50 MB per file
ALLOWED_EXTENSIONS = (".pdf", ".docx", ".txt", ".md", ".html", ".htm")


def _to_response(report: IngestionReport) -> IngestResponse:
    return IngestResponse(
        ok=report.ok,
        title=report.source_title,
        source_url=report.source_url,
        chunks_total=report.chunks_total,
        chunks_stored=report.chunks_stored,
        replaced=report.replaced,
    )


def _http_error(e: FlexyBotError) -> HTTPException:
    """Translate a pipeline error into an HTTP error."""
    if isinstance(e, ValidationError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, FetchError):
        return HTTPException(
            status_code=502,
            detail={"error": "fetch_failed", "message": str(e), "status_code": e.status_code},
        )
    if isinstance(e, IngestionCancelled):
        return HTTPException(
            status_code=409,
            detail={"error": "cancelled", "chunks_stored": e.chunks_stored},
        )
    if isinstance(e, IngestionError):
        return HTTPException(
            status_code=502,
            detail={
                "error": type(e).__name__,
                "message": str(e),
                "chunks_stored": e.chunks_stored,
                "failed_chunk": e.chunk_index,
            },
        )
    return HTTPException(status_code=500, detail="Internal server error")


def _tenant_scope(organization_id: str, chatbot_id: Optional[str]):
    """Canonicalize query-string ids the same way ingestion does."""
    org = canonical_id(organization_id)
    if org is None:
        raise HTTPException(status_code=400, detail="organization_id is required")
    return org, canonical_id(chatbot_id)


# ==================== Document Upload ====================

@router.post("/documents/upload")
def upload_documents(
    organization_id: str = Form(...),
    chatbot_id: Optional[str] = Form(None),
    files: List[UploadFile] = File(...),
    pipeline: IngestionPipeline = Depends(get_pipeline),
):
    """
    Upload one or more documents.

    Supported formats: PDF, DOCX, TXT, Markdown, HTML

    Process:
    1. Save uploaded file to a temp file
    2. Extract text
    3. Normalize, chunk, embed and store (replacing earlier uploads of the
       same filename)

    Processing stops at the first failing file; files before it stay stored.
    """
    if not organization_id.strip():
        raise HTTPException(status_code=400, detail="organization_id is required")
    if not files:
        raise HTTPException(status_code=400, detail="No files uploaded")
    if len(files) > MAX_FILES_PER_UPLOAD:
        raise HTTPException(
            status_code=400,
            detail=f"Too many files. Maximum {MAX_FILES_PER_UPLOAD} files per upload.",
        )

    inserted = []
    for f in files:
        filename = f.filename or "upload"
        logger.info("Processing file", filename=filename, content_type=f.content_type)

        if not filename.lower().endswith(ALLOWED_EXTENSIONS):
            raise HTTPException(status_code=400, detail=f"Unsupported file type: {filename}")

        f.file.seek(0, os.SEEK_END)
        size_bytes = f.file.tell()
        f.file.seek(0)
        if size_bytes > MAX_FILE_SIZE_BYTES:
            raise HTTPException(
                status_code=400,
                detail=(
                    f"File '{filename}' is too large. "
                    f"Max size is {MAX_FILE_SIZE_BYTES // (1024 * 1024)} MB."
                ),
            )

        with tempfile.NamedTemporaryFile(delete=False) as tmp:
            shutil.copyfileobj(f.file, tmp)
            tmp_path = tmp.name

        try:
            doc_text, kind = read_any(tmp_path, f.content_type or "", filename)
        except ValidationError as e:
            logger.error("Error extracting text", filename=filename, error=str(e))
            raise _http_error(e)
        finally:
            os.remove(tmp_path)

        if not doc_text.strip():
            logger.warning("Empty document", filename=filename)
            continue

        source = SourceMetadata(
            organization_id=organization_id,
            chatbot_id=chatbot_id,
            title=filename,
            type="document",
            metadata={"filename": filename, "kind": kind, "mime_type": f.content_type or "", "size_bytes": size_bytes},
        )
        try:
            report = pipeline.ingest_text(doc_text, source)
        except FlexyBotError as e:
            logger.error("Document ingestion failed", filename=filename, error=str(e))
            raise _http_error(e)

        inserted.append(_to_response(report).model_dump())

    return {"ok": True, "inserted": inserted}


# ==================== Text / Webpage Ingestion ====================

@router.post("/documents/text", response_model=IngestResponse)
def ingest_text(body: TextIngestBody, pipeline: IngestionPipeline = Depends(get_pipeline)):
    """Ingest raw text or HTML supplied in the request body."""
    try:
        report = pipeline.ingest_text(
            body.content,
            body.source,
            is_html=body.is_html,
            replace_existing=body.replace_existing,
        )
    except FlexyBotError as e:
        raise _http_error(e)
    return _to_response(report)


@router.post("/webpages", response_model=IngestResponse)
def ingest_webpage(body: WebpageIngestBody, pipeline: IngestionPipeline = Depends(get_pipeline)):
    """Fetch a webpage and ingest its text."""
    source = {
        "organization_id": body.organization_id,
        "chatbot_id": body.chatbot_id,
        "title": body.title,
        "metadata": body.metadata,
    }
    try:
        report = pipeline.ingest_webpage(body.url, source, replace_existing=body.replace_existing)
    except FlexyBotError as e:
        logger.error("Webpage ingestion failed", url=body.url, error=str(e))
        raise _http_error(e)
    return _to_response(report)


# ==================== Sources ====================

@router.get("/sources")
def list_sources(
    organization_id: str = Query(..., min_length=1),
    chatbot_id: Optional[str] = None,
    store: ChunkStore = Depends(get_store),
):
    """
    Returns the tenant's sources with chunk counts.
    """
    organization_id, chatbot_id = _tenant_scope(organization_id, chatbot_id)
    try:
        sources = store.list_sources(organization_id, chatbot_id=chatbot_id)
    except FlexyBotError as e:
        raise _http_error(e)
    logger.info("Listed sources", organization_id=organization_id, count=len(sources))
    return sources


@router.delete("/sources")
def delete_source(
    organization_id: str = Query(..., min_length=1),
    chatbot_id: Optional[str] = None,
    source_url: Optional[str] = None,
    title: Optional[str] = None,
    store: ChunkStore = Depends(get_store),
):
    """
    Deletes every chunk of one source (identified by URL, or by title when
    the source has no URL).
    """
    if not source_url and not title:
        raise HTTPException(status_code=400, detail="source_url or title is required")
    organization_id, chatbot_id = _tenant_scope(organization_id, chatbot_id)
    try:
        deleted = store.delete_by_source(
            organization_id, source_url=source_url, title=title, chatbot_id=chatbot_id
        )
    except FlexyBotError as e:
        raise _http_error(e)

    if not deleted:
        logger.warning("Source not found for deletion", organization_id=organization_id,
                       source_url=source_url, title=title)
        raise HTTPException(status_code=404, detail="Source not found")

    logger.info("Source deleted", organization_id=organization_id, chunks=deleted)
    return {"ok": True, "deleted": deleted}
