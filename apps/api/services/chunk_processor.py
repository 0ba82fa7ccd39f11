"""
Chunk processor: one LLM call per chunk, in fixed-size concurrent batches.

A failing chunk is recorded and never aborts its siblings, so the merger must
cope with any non-empty subset of successful chunks.
"""

import asyncio
import logging
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from services.content_chunker import Chunk
from services.response_parser import parse_ai_response

logger = logging.getLogger(__name__)

RequestFn = Callable[[str], Awaitable[str]]
T = TypeVar("T")


@dataclass
class ChunkResult:
    """Outcome of processing a single chunk"""
    chunk_id: str
    chunk_number: int
    processed: bool
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    size: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def build_chunk_prompt(chunk: Chunk, operation: str = "analysis") -> str:
    """Prompt for one chunk, carrying its position so the model knows it is partial"""
    instruction = (
        "Analyze this chunk and extract key information."
        if operation == "analysis" else
        "Process this chunk."
    )

    return f"""CHUNK CONTEXT:
- Chunk {chunk.chunk_number} of {chunk.total_chunks}
- Size: {chunk.size} characters
- Position: {chunk.start_index}-{chunk.end_index}
- Is Final Chunk: {chunk.is_complete}

This is only part of a larger document. Report what this part contains; do not
invent material that is not in it.

CHUNK CONTENT:
\"\"\"{chunk.content}\"\"\"

{instruction} Respond with valid JSON only, in this shape:
{{
  "sourceAnalysis": {{
    "keyClaims": ["claim1", "claim2"],
    "keyTerms": ["term1", "term2"],
    "frameworks": ["framework1"],
    "examples": ["example1"],
    "authorVoice": "short description of tone"
  }},
  "courseBlueprint": {{
    "targetAudience": "who this material is for",
    "prerequisites": ["prerequisite1"],
    "learningOutcomes": ["outcome1"],
    "syllabus": ["topic1", "topic2"]
  }},
  "contentGaps": {{
    "missingConcepts": ["concept1"],
    "needsVerification": ["statement1"],
    "suggestedAdditions": ["addition1"]
  }}
}}"""


async def run_in_batches(
    factories: List[Callable[[], Awaitable[T]]],
    batch_size: int,
    delay: float = 0.0
) -> List[T]:
    """
    Await coroutine factories ``batch_size`` at a time.

    A batch starts only after the previous one has fully settled, which bounds
    the number of in-flight upstream requests. Results keep input order.
    """
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")

    results: List[T] = []
    for i in range(0, len(factories), batch_size):
        batch = factories[i:i + batch_size]
        results.extend(await asyncio.gather(*(factory() for factory in batch)))

        if delay > 0 and i + batch_size < len(factories):
            await asyncio.sleep(delay)

    return results


class ChunkProcessor:
    """Drive the injected request function over a list of chunks."""

    def __init__(
        self,
        request_fn: RequestFn,
        batch_size: int = 3,
        batch_delay: float = 1.0
    ):
        self.request_fn = request_fn
        self.batch_size = batch_size
        self.batch_delay = batch_delay

    async def process_chunk(self, chunk: Chunk, operation: str = "analysis") -> ChunkResult:
        """Process one chunk; failures become data, never exceptions"""
        logger.info(f"Processing {chunk.id} ({chunk.size} chars)...")

        try:
            response_text = await self.request_fn(build_chunk_prompt(chunk, operation))
            parsed = parse_ai_response(response_text)

            if parsed.get("fallback"):
                raise ValueError(parsed.get("error") or "Unparseable chunk response")

            return ChunkResult(
                chunk_id=chunk.id,
                chunk_number=chunk.chunk_number,
                processed=True,
                result=parsed,
                size=chunk.size,
            )

        except Exception as e:
            logger.error(f"Error processing chunk {chunk.id}: {e}")
            return ChunkResult(
                chunk_id=chunk.id,
                chunk_number=chunk.chunk_number,
                processed=False,
                error=str(e) or type(e).__name__,
                size=chunk.size,
            )

    async def process_chunks(self, chunks: List[Chunk], operation: str = "analysis") -> List[ChunkResult]:
        """Process all chunks in sequential batches of concurrent requests"""
        logger.info(f"Processing {len(chunks)} chunks for {operation} "
                    f"(batch size {self.batch_size})")

        results = await run_in_batches(
            [lambda chunk=chunk: self.process_chunk(chunk, operation) for chunk in chunks],
            self.batch_size,
            self.batch_delay
        )

        failed = [r.chunk_id for r in results if not r.processed]
        logger.info(f"Chunk processing complete: {len(results) - len(failed)} successful, "
                    f"{len(failed)} failed")
        if failed:
            logger.warning(f"Failed chunks: {failed}")

        return results


async def process_chunks(
    chunks: List[Chunk],
    request_fn: RequestFn,
    operation: str = "analysis",
    batch_size: int = 3,
    batch_delay: float = 1.0
) -> List[ChunkResult]:
    """Functional entry point around ``ChunkProcessor``"""
    processor = ChunkProcessor(request_fn, batch_size=batch_size, batch_delay=batch_delay)
    return await processor.process_chunks(chunks, operation)
