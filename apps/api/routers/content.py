import logging
from typing import Any, Dict
from fastapi import APIRouter, HTTPException
from models.content import (
    AnalyzeRequest,
    ChunkRequest,
    ChunkResponse,
    DistributeRequest,
    DistributeResponse,
    InsightsRequest,
    InsightsResponse,
    ParseRequest,
    ParseResponse,
)
from services.content_chunker import chunk_content
from services.content_distributor import coverage_ratio, distribute_content, validate_distribution
from services.course_service import course_service
from services.insight_extractor import calculate_optimal_lessons, extract_insights
from services.llm_service import llm_service
from services.response_parser import parse_ai_response, parse_json_object
from utils.error_handler import ErrorHandler

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/content/parse", response_model=ParseResponse)
async def parse_response(request: ParseRequest):
    """Run raw model output through the JSON repair ladder"""
    if request.analysis:
        result = parse_ai_response(request.response)
        return ParseResponse(result=result, fallback=bool(result.get("fallback")))

    result = parse_json_object(request.response)
    return ParseResponse(result=result, fallback=result is None)


@router.post("/content/chunk", response_model=ChunkResponse)
async def chunk_source(request: ChunkRequest):
    """Split source content into overlapping, boundary-aware chunks"""
    try:
        chunks = chunk_content(
            request.content,
            max_chunk_size=request.max_chunk_size,
            overlap=request.overlap,
            min_chunk_size=request.min_chunk_size,
            max_chunks=request.max_chunks,
        )
    except ValueError as e:
        raise ErrorHandler.handle_bad_request(str(e))

    return ChunkResponse(total_chunks=len(chunks), chunks=[c.to_dict() for c in chunks])


@router.post("/content/distribute", response_model=DistributeResponse)
async def distribute_source(request: DistributeRequest):
    """Preview how source content would be split across modules"""
    assignments = distribute_content(request.content, request.module_count)
    return DistributeResponse(
        assignments=[a.to_dict() for a in assignments],
        valid=validate_distribution(assignments, request.content),
        coverage=coverage_ratio(assignments, request.content),
    )


@router.post("/content/insights", response_model=InsightsResponse)
async def content_insights(request: InsightsRequest):
    """Offline heuristic insights and suggested course size"""
    return InsightsResponse(
        insights=extract_insights(request.content),
        structure=calculate_optimal_lessons(request.content, request.target_modules),
    )


@router.post("/content/analyze")
async def analyze_content(request: AnalyzeRequest) -> Dict[str, Any]:
    """Analyze source content with the model, falling back to offline analysis"""
    try:
        return await course_service.analyze_source(
            request.content,
            provider=request.provider,
            target_audience=request.target_audience,
            prerequisites=request.prerequisites,
        )
    except ValueError as e:
        raise ErrorHandler.handle_bad_request(str(e))
    except HTTPException:
        raise
    except Exception as e:
        raise ErrorHandler.handle_service_error("analyze content", e)


@router.get("/llm/health")
async def llm_health():
    """Configured LLM providers"""
    return await llm_service.health_check()
