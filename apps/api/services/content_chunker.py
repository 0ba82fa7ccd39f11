"""
Content chunker for oversized source material.

Splits source text into a bounded sequence of overlapping chunks sized for one
LLM request each. Cuts prefer paragraph breaks, then sentence breaks, so a
claim or example is not severed mid-sentence.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional

from config import settings

logger = logging.getLogger(__name__)

PARAGRAPH_BREAK = "\n\n"
SENTENCE_BREAK = ". "


@dataclass
class ChunkConfig:
    """Size budget for chunking one provider's requests"""
    max_chunk_size: int = 8000
    overlap: int = 500
    min_chunk_size: int = 1000
    max_chunks: int = 20


@dataclass
class Chunk:
    """A position-tracked substring of the source content"""
    id: str
    content: str
    start_index: int
    end_index: int
    size: int
    chunk_number: int
    total_chunks: int
    is_complete: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def chunk_config_for(provider: Optional[str] = None) -> ChunkConfig:
    """Chunking budget for a provider, taken from settings"""
    provider = provider or settings.default_provider
    return ChunkConfig(
        max_chunk_size=settings.get_max_chunk_size(provider),
        overlap=settings.chunk_overlap,
        min_chunk_size=settings.min_chunk_size,
        max_chunks=settings.max_chunks,
    )


def _find_boundary(content: str, start: int, end: int, min_chunk_size: int) -> int:
    """Cut point after the last paragraph or sentence break in the window, or ``end``."""
    earliest = start + min_chunk_size

    for separator in (PARAGRAPH_BREAK, SENTENCE_BREAK):
        position = content.rfind(separator, earliest, end)
        if position != -1:
            return position + len(separator)

    return end


def chunk_content(
    content: str,
    max_chunk_size: int = 8000,
    overlap: int = 500,
    min_chunk_size: int = 1000,
    max_chunks: int = 20
) -> List[Chunk]:
    """
    Split content into boundary-aware, overlapping chunks.

    Args:
        content: Source text
        max_chunk_size: Upper bound on a chunk's length in characters
        overlap: Characters repeated at the start of the following chunk
        min_chunk_size: Smallest distance a chunk advances past its predecessor
        max_chunks: Hard cap on the number of chunks (bounds upstream calls)

    Returns:
        Chunks in document order, numbered from 1
    """
    if max_chunk_size <= 0 or min_chunk_size <= 0 or max_chunks <= 0:
        raise ValueError("Chunk sizes and chunk count must be positive")
    if overlap < 0 or overlap >= max_chunk_size:
        raise ValueError("Overlap must be non-negative and smaller than max_chunk_size")
    if min_chunk_size > max_chunk_size:
        raise ValueError("min_chunk_size cannot exceed max_chunk_size")

    content_length = len(content)

    if content_length <= max_chunk_size:
        return [Chunk(
            id="chunk-1",
            content=content,
            start_index=0,
            end_index=content_length,
            size=content_length,
            chunk_number=1,
            total_chunks=1,
            is_complete=True,
        )]

    chunks: List[Chunk] = []
    start = 0

    while start < content_length and len(chunks) < max_chunks:
        end = min(start + max_chunk_size, content_length)

        if end < content_length:
            end = _find_boundary(content, start, end, min_chunk_size)

        chunk_text = content[start:end]
        chunks.append(Chunk(
            id=f"chunk-{len(chunks) + 1}",
            content=chunk_text,
            start_index=start,
            end_index=end,
            size=len(chunk_text),
            chunk_number=len(chunks) + 1,
            total_chunks=0,  # set once the loop completes
            is_complete=end >= content_length,
        ))

        if end >= content_length:
            break

        start = max(end - overlap, start + min_chunk_size)

    for chunk in chunks:
        chunk.total_chunks = len(chunks)

    if not chunks[-1].is_complete:
        logger.warning(
            f"Chunk limit {max_chunks} reached; "
            f"{content_length - chunks[-1].end_index} trailing characters not chunked"
        )

    logger.info(f"Content chunked into {len(chunks)} pieces: {[c.size for c in chunks]}")
    return chunks
