"""
Retrieval and chat API routes.
"""
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from openai import OpenAI

from ..config import Settings, get_settings
from ..dependencies import get_chat_client, get_retriever
from ..errors import ValidationError
from ..logging_config import logger
from ..retrieval import Retriever
from ..schemas import ChatBody, RetrieveBody, RetrieveResponse
from ..services.rag_service import stream_answer

router = APIRouter(prefix="/api", tags=["chat"])


@router.post("/retrieve", response_model=RetrieveResponse)
def retrieve(payload: RetrieveBody, retriever: Retriever = Depends(get_retriever)):
    """
    Return the tenant's most relevant chunks for a query.

    A degraded knowledge base answers 200 with ``ok: false`` and no chunks.
    """
    try:
        result = retriever.retrieve(
            payload.query,
            organization_id=payload.organization_id,
            chatbot_id=payload.chatbot_id,
            limit=payload.limit,
            similarity_threshold=payload.similarity_threshold,
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if result.ok:
        return RetrieveResponse(ok=True, chunks=result.chunks)
    return RetrieveResponse(ok=False, reason=result.reason, chunks=[])


@router.post("/chat")
async def chat(
    payload: ChatBody,
    retriever: Retriever = Depends(get_retriever),
    client: OpenAI = Depends(get_chat_client),
    settings: Settings = Depends(get_settings),
):
    """
    Streaming grounded answer using Server-Sent Events (SSE).

    Workflow:
    1. Retrieve relevant chunks for the tenant (fail-open)
    2. Build context and stream the LLM response
    """
    if not payload.question.strip() or not payload.organization_id.strip():
        raise HTTPException(status_code=400, detail="question and organization_id are required")

    logger.info("Chat request", organization_id=payload.organization_id, chatbot_id=payload.chatbot_id)
    return StreamingResponse(
        stream_answer(payload, retriever, client, settings.openai_model),
        media_type="text/event-stream",
    )
