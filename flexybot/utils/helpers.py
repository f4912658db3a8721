"""
Utility helper functions.
"""
from typing import Dict, List

from ..schemas import RetrievedChunk

PREVIEW_CHARS = 200


def dedupe_sources(chunks: List[RetrievedChunk]) -> List[Dict]:
    """
    Deduplicate source documents from retrieved chunks.

    For each unique title, keeps the highest scoring chunk and includes
    a preview of the content that was used.
    Returns sources sorted by score (descending).

    Example:
        >>> dedupe_sources([
        ...     RetrievedChunk(id="1", title="doc1", similarity=0.8, content="Long text..."),
        ...     RetrievedChunk(id="2", title="doc1", similarity=0.75, content="Other text..."),
        ... ])
        [{'title': 'doc1', 'score': 0.8, 'preview': 'Long text...'}]
    """
    source_map: Dict[str, Dict] = {}

    for chunk in chunks:
        current = source_map.get(chunk.title)
        if current is None or chunk.similarity > current["score"]:
            source_map[chunk.title] = {"score": chunk.similarity, "content": chunk.content}

    sources = []
    for title, data in sorted(source_map.items(), key=lambda x: x[1]["score"], reverse=True):
        preview = data["content"][:PREVIEW_CHARS].strip()
        if len(data["content"]) > PREVIEW_CHARS:
            preview += "..."

        sources.append({
            "title": title,
            "score": round(data["score"], 3),
            "preview": preview,
        })

    return sources
