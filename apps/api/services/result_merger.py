"""
Merge per-chunk partial analyses into one ParsedAnalysis.

List fields are unioned and deduplicated, scalar fields take the first
non-empty value in chunk order. The union is commutative, so the order in which
concurrent chunk requests completed does not matter.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List

from services.chunk_processor import ChunkResult
from services.response_parser import (
    ANALYSIS_SECTIONS,
    ensure_analysis_shape,
    parse_ai_response,
)

logger = logging.getLogger(__name__)


class NoSuccessfulChunksError(RuntimeError):
    """Raised when there is nothing to merge because every chunk failed"""


def _dedupe(items: Iterable[Any]) -> List[Any]:
    """Drop exact duplicates, keeping first occurrences in order"""
    seen = set()
    unique = []
    for item in items:
        key = item if isinstance(item, (str, int, float, bool)) else json.dumps(item, sort_keys=True, default=str)
        if key in seen:
            continue
        seen.add(key)
        unique.append(item)
    return unique


def _section_of(parsed: Dict[str, Any], section: str) -> Dict[str, Any]:
    """
    A section of a chunk result.

    Chunk prompts ask for nested sections, but some models answer with the
    fields at top level; those are accepted too.
    """
    value = parsed.get(section)
    nested = value if isinstance(value, dict) else {}
    flat = {name: parsed[name] for name in ANALYSIS_SECTIONS[section] if name in parsed}
    return {**flat, **{k: v for k, v in nested.items() if v not in ("", [], None)}}


def mergeable_results(results: List[ChunkResult]) -> List[ChunkResult]:
    return sorted(
        (r for r in results if r.processed and r.result is not None),
        key=lambda r: r.chunk_number
    )


def merge_chunk_results(results: List[ChunkResult], operation: str = "analysis") -> Dict[str, Any]:
    """
    Combine successful chunk results into a single analysis.

    Raises:
        NoSuccessfulChunksError: if no chunk was processed successfully
    """
    successful = mergeable_results(results)
    if not successful:
        raise NoSuccessfulChunksError("No chunks were successfully processed")

    logger.info(f"Merging {len(successful)} successful chunk results for {operation}...")

    merged: Dict[str, Any] = {section: {} for section in ANALYSIS_SECTIONS}
    scope_options = None

    for chunk_result in successful:
        parsed = chunk_result.result
        if isinstance(parsed, str):
            parsed = parse_ai_response(parsed)

        for section, defaults in ANALYSIS_SECTIONS.items():
            values = _section_of(parsed, section)
            target = merged[section]
            for name, default in defaults.items():
                value = values.get(name)
                if isinstance(default, list):
                    if isinstance(value, list):
                        target.setdefault(name, []).extend(value)
                    elif isinstance(value, str) and value:
                        target.setdefault(name, []).append(value)
                elif not target.get(name) and isinstance(value, str) and value.strip():
                    target[name] = value

        if scope_options is None and isinstance(parsed.get("scopeOptions"), dict):
            scope_options = parsed["scopeOptions"]

    for section, defaults in ANALYSIS_SECTIONS.items():
        for name, default in defaults.items():
            if isinstance(default, list) and name in merged[section]:
                merged[section][name] = _dedupe(merged[section][name])

    if scope_options is not None:
        merged["scopeOptions"] = scope_options

    merged["chunkProcessingInfo"] = {
        "totalChunks": len(results),
        "successfulChunks": len(successful),
        "failedChunks": len(results) - len(successful),
        "processingTimestamp": datetime.now(timezone.utc).isoformat(),
        "operation": operation,
    }

    return ensure_analysis_shape(merged)
