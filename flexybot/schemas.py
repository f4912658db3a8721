"""
Pydantic schemas for stored chunks and request/response validation.
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

SourceType = Literal["document", "webpage"]
Role = Literal["system", "user", "assistant"]

UNTITLED = "Untitled Document"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def canonical_id(value: Optional[str]) -> Optional[str]:
    """
    Canonical form of a tenant or chatbot id: surrounding whitespace removed,
    blank treated as absent. Every read and write path goes through this.
    """
    if value is None:
        return None
    value = value.strip()
    return value or None


# ==================== Pipeline models ====================

class SourceMetadata(BaseModel):
    """Tenant and descriptive metadata attached to every chunk of a source."""

    organization_id: str = Field(..., description="Owning tenant; mandatory on every read and write")
    chatbot_id: Optional[str] = Field(None, description="Narrower scope; None means organization-wide")
    title: Optional[str] = None
    source_url: Optional[str] = None
    type: SourceType = "document"
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("organization_id")
    @classmethod
    def _organization_required(cls, v: str) -> str:
        v = canonical_id(v)
        if v is None:
            raise ValueError("organization_id is required")
        return v

    @field_validator("chatbot_id")
    @classmethod
    def _canonical_chatbot(cls, v: Optional[str]) -> Optional[str]:
        return canonical_id(v)


class ChunkRecord(BaseModel):
    """A persisted chunk. Never updated in place: replaced by delete + insert."""

    model_config = {"frozen": True}

    id: str = Field(default_factory=_new_id)
    content: str
    embedding: List[float]
    organization_id: str
    chatbot_id: Optional[str] = None
    title: Optional[str] = None
    source_url: Optional[str] = None
    type: SourceType = "document"
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class ChunkMatch(BaseModel):
    """A row returned by a store similarity query."""

    id: str
    organization_id: str
    chatbot_id: Optional[str] = None
    content: str
    title: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    similarity: float


class RetrievedChunk(BaseModel):
    """A ranked chunk handed to prompt construction."""

    id: str
    content: str
    title: str = UNTITLED
    metadata: Dict[str, Any] = Field(default_factory=dict)
    similarity: float


# ==================== API bodies ====================

class TextIngestBody(BaseModel):
    """Request body for ingesting raw text or HTML."""
    source: SourceMetadata
    content: str = Field(..., min_length=1)
    is_html: bool = False
    replace_existing: bool = True


class WebpageIngestBody(BaseModel):
    """Request body for ingesting a webpage."""
    organization_id: str = Field(..., min_length=1)
    chatbot_id: Optional[str] = None
    url: str = Field(..., min_length=1)
    title: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    replace_existing: bool = True


class IngestResponse(BaseModel):
    ok: bool
    title: Optional[str] = None
    source_url: Optional[str] = None
    chunks_total: int
    chunks_stored: int
    replaced: int = 0


class RetrieveBody(BaseModel):
    """Request body for retrieving relevant chunks."""
    query: str = Field(..., min_length=1, description="The natural-language query")
    organization_id: str = Field(..., min_length=1)
    chatbot_id: Optional[str] = None
    limit: int = Field(5, ge=1, le=50, description="Number of chunks to retrieve")
    similarity_threshold: float = Field(0.7, ge=0.0, le=1.0, description="Minimum cosine similarity")


class RetrieveResponse(BaseModel):
    ok: bool
    reason: Optional[str] = None
    chunks: List[RetrievedChunk] = Field(default_factory=list)


class ChatTurn(BaseModel):
    """Represents a single turn in a conversation."""
    role: Role
    content: str


class ChatBody(BaseModel):
    """Request body for a grounded chat answer."""
    question: str = Field(..., min_length=1, description="The question to ask")
    organization_id: str = Field(..., min_length=1)
    chatbot_id: Optional[str] = None
    history: Optional[List[ChatTurn]] = Field(None, description="Previous conversation turns")
    system_prompt: Optional[str] = None
    temperature: float = Field(0.7, ge=0.0, le=2.0)
    use_rag: bool = True
    limit: int = Field(5, ge=1, le=20)
    similarity_threshold: float = Field(0.7, ge=0.0, le=1.0)
