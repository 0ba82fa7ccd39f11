from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class ParseRequest(BaseModel):
    """Raw model output to run through the repair ladder"""
    response: str
    analysis: bool = Field(True, description="Fill analysis fields and fall back on failure")


class ParseResponse(BaseModel):
    result: Optional[Dict[str, Any]] = None
    fallback: bool = False


class ChunkRequest(BaseModel):
    content: str
    max_chunk_size: int = Field(8000, gt=0)
    overlap: int = Field(500, ge=0)
    min_chunk_size: int = Field(1000, gt=0)
    max_chunks: int = Field(20, gt=0)


class ChunkResponseItem(BaseModel):
    id: str
    content: str
    start_index: int
    end_index: int
    size: int
    chunk_number: int
    total_chunks: int
    is_complete: bool


class ChunkResponse(BaseModel):
    total_chunks: int
    chunks: List[ChunkResponseItem]


class DistributeRequest(BaseModel):
    content: str
    module_count: int = Field(3, ge=1, le=20)


class ModuleAssignmentItem(BaseModel):
    module_index: int
    content: str
    word_count: int
    position_label: str
    start_index: int
    end_index: int
    strategy: str


class DistributeResponse(BaseModel):
    assignments: List[ModuleAssignmentItem]
    valid: bool
    coverage: float


class InsightsRequest(BaseModel):
    content: str
    target_modules: int = Field(3, ge=1, le=20)


class InsightsResponse(BaseModel):
    insights: Dict[str, Any]
    structure: Dict[str, Any]


class AnalyzeRequest(BaseModel):
    """Analyze source content without storing a course"""
    content: str = Field(..., min_length=1)
    provider: Optional[str] = None
    target_audience: Optional[str] = None
    prerequisites: Optional[List[str]] = None
