"""
RAG answer service.
Retrieves tenant context, builds the prompt and streams the chat completion.
"""
import json
from time import perf_counter
from typing import Dict, Iterator, List

import openai
from openai import OpenAI

from ..logging_config import logger
from ..retrieval import Retriever
from ..schemas import ChatBody, RetrievedChunk
from ..utils.helpers import dedupe_sources

MAX_CONTEXT_CHARS_PER_CHUNK = 800
DEFAULT_SYSTEM_PROMPT = "You are a helpful AI assistant."

GROUNDING_INSTRUCTIONS = """
Answer using the information in the CONTEXT below when it is relevant.
If the CONTEXT does not contain the answer, say you don't have that information
in the knowledge base instead of guessing.
"""


def _sse(event: Dict) -> str:
    return f"data: {json.dumps(event)}\n\n"


def build_context(chunks: List[RetrievedChunk]) -> str:
    """
    Build a numbered context string from retrieved chunks.

    Args:
        chunks: Chunks already sorted and limited by the retriever

    Returns:
        Formatted context string, empty when there are no chunks
    """
    context_parts = []
    for i, chunk in enumerate(chunks, start=1):
        content = chunk.content[:MAX_CONTEXT_CHARS_PER_CHUNK]
        context_parts.append(f"[{i}] {chunk.title}\n{content}")

    return "\n\n---\n\n".join(context_parts)


def build_messages(payload: ChatBody, context: str) -> List[Dict]:
    system_prompt = payload.system_prompt or DEFAULT_SYSTEM_PROMPT
    if context:
        system_prompt = f"{system_prompt}\n{GROUNDING_INSTRUCTIONS}"

    messages = [{"role": "system", "content": system_prompt}]
    for turn in payload.history or []:
        messages.append({"role": turn.role, "content": turn.content})

    question = payload.question.strip()
    if context:
        messages.append({"role": "user", "content": f"QUESTION: {question}\n\nCONTEXT:\n{context}"})
    else:
        messages.append({"role": "user", "content": question})
    return messages


def stream_answer(
    payload: ChatBody,
    retriever: Retriever,
    client: OpenAI,
    model_name: str,
) -> Iterator[str]:
    """
    Stream a grounded answer as Server-Sent Events.

    A plain generator: StreamingResponse iterates it in a worker thread, so
    the blocking retrieval and completion calls stay off the event loop.

    Events: ``meta`` (sources, whether context was available), ``delta``
    (text), ``done``, or ``error`` if the completion call fails.
    Retrieval failures degrade to answering without context.
    """
    t = perf_counter()
    chunks: List[RetrievedChunk] = []
    degraded = False

    if payload.use_rag:
        result = retriever.retrieve(
            payload.question,
            organization_id=payload.organization_id,
            chatbot_id=payload.chatbot_id,
            limit=payload.limit,
            similarity_threshold=payload.similarity_threshold,
        )
        degraded = not result.ok
        chunks = result.chunks_or_empty()

    context = build_context(chunks)
    sources = dedupe_sources(chunks)
    yield _sse({"type": "meta", "sources": sources, "context_available": bool(chunks), "degraded": degraded})

    messages = build_messages(payload, context)
    logger.info(
        "Sending to LLM",
        organization_id=payload.organization_id,
        model=model_name,
        context_length=len(context),
        history_turns=len(payload.history or []),
        sources_count=len(sources),
    )

    try:
        stream = client.chat.completions.create(
            model=model_name,
            messages=messages,
            temperature=payload.temperature,
            stream=True,
        )
        for part in stream:
            if not part.choices:
                continue
            delta = part.choices[0].delta.content or ""
            if delta:
                yield _sse({"type": "delta", "text": delta})
    except openai.OpenAIError as e:
        logger.error("Chat completion failed", model=model_name, error=str(e))
        yield _sse({"type": "error", "message": "The assistant is temporarily unavailable."})
        return

    logger.info("Answer streamed", model=model_name, seconds=round(perf_counter() - t, 2))
    yield _sse({"type": "done"})
