"""Text chunking for long-document summarization."""

import re
from typing import List, Optional


def _split_sentences(text: str) -> List[str]:
    """Split text into sentences on terminal punctuation."""
    return [s.strip() for s in re.split(r'(?<=[.!?])\s+', text) if s.strip()]


def chunk_text(
    text: str,
    *,
    max_chars: int = 2500,
    max_chunks: Optional[int] = None,
) -> List[str]:
    """
    Split text into chunks of at most ``max_chars`` characters.

    Sentences are packed greedily; a single sentence longer than
    ``max_chars`` is hard-split. When ``max_chunks`` is set, the text past
    that many chunks is dropped.

    Args:
        text: Input text to chunk
        max_chars: Maximum characters per chunk
        max_chunks: Optional cap on the number of chunks

    Returns:
        List of text chunks
    """
    text = text.strip()
    if not text:
        return []
    if len(text) <= max_chars:
        return [text]

    def full() -> bool:
        return max_chunks is not None and len(chunks) >= max_chunks

    chunks: List[str] = []
    current = ""

    for sentence in _split_sentences(text):
        if full():
            break
        if len(current) + len(sentence) + 1 <= max_chars:
            current = f"{current} {sentence}" if current else sentence
            continue

        if current:
            chunks.append(current)
        current = sentence
        while len(current) > max_chars and not full():
            chunks.append(current[:max_chars])
            current = current[max_chars:]

    if current and not full():
        chunks.append(current)

    return [c.strip() for c in chunks if c.strip()]
