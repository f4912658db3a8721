"""
Overlapping, size-bounded text chunking.
"""
from typing import List, Tuple

from .errors import ValidationError

DEFAULT_CHUNK_SIZE = 1500
DEFAULT_OVERLAP = 200

PARAGRAPH_BREAK = "\n\n"
SENTENCE_BREAK = ". "


def _find_cut(text: str, start: int, end: int, overlap: int) -> int:
    """
    Pick where to cut a chunk that would otherwise end at ``end``.

    Breaks are searched in ``[end - overlap, end]``, preferring a paragraph
    break, then a sentence end (cut after ". "), then the last space after
    ``start``. With none of those the cut stays at ``end``.
    """
    window_start = end - overlap

    paragraph = text.find(PARAGRAPH_BREAK, window_start, end + len(PARAGRAPH_BREAK))
    if paragraph != -1:
        return paragraph

    sentence = text.find(SENTENCE_BREAK, window_start, end)
    if sentence != -1:
        return sentence + len(SENTENCE_BREAK)

    space = text.rfind(" ", start + 1, end + 1)
    if space != -1:
        return space

    # No whitespace in range: mid-word cut.
    return end


def check_sizes(max_chunk_size: int, overlap: int) -> None:
    """
    Raises:
        ValidationError: If ``max_chunk_size`` is not positive, or ``overlap``
            is negative or not smaller than ``max_chunk_size``.
    """
    if max_chunk_size <= 0:
        raise ValidationError(f"max_chunk_size must be positive, got {max_chunk_size}")
    if overlap < 0 or overlap >= max_chunk_size:
        raise ValidationError(
            f"overlap must be >= 0 and smaller than max_chunk_size "
            f"(got overlap={overlap}, max_chunk_size={max_chunk_size})"
        )


def chunk_spans(
    text: str,
    max_chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_OVERLAP,
) -> List[Tuple[int, int]]:
    """
    Return the ``(start, end)`` offsets of every raw chunk, before stripping.

    Consecutive spans touch or overlap, so together they cover the whole text.
    """
    check_sizes(max_chunk_size, overlap)

    spans: List[Tuple[int, int]] = []
    n = len(text)
    start = 0

    while start < n:
        end = min(start + max_chunk_size, n)
        if end < n:
            end = _find_cut(text, start, end, overlap)
        spans.append((start, end))

        if end >= n:
            break

        # The cursor must always move forward.
        next_start = end - overlap
        start = next_start if next_start > start else end

    return spans


def split_document(
    text: str,
    max_chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_OVERLAP,
) -> List[str]:
    """
    Split normalized text into overlapping chunks of at most ``max_chunk_size``
    characters, cutting at natural boundaries where possible.

    Adjacent chunks share up to ``overlap`` characters so that meaning is not
    lost at a cut. The output never contains empty or whitespace-only chunks.

    Args:
        text: Normalized text to split
        max_chunk_size: Upper bound on chunk length in characters
        overlap: Characters repeated between adjacent chunks

    Returns:
        Ordered list of chunk strings

    Raises:
        ValidationError: If ``overlap`` is negative or not smaller than
            ``max_chunk_size``.

    Example:
        >>> split_document("Short text.")
        ['Short text.']
    """
    chunks = []
    for start, end in chunk_spans(text, max_chunk_size, overlap):
        chunk = text[start:end].strip()
        if chunk:
            chunks.append(chunk)
    return chunks
