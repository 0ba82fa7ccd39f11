from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from beanie import Document
from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def sanitize_document_keys(value: Any) -> Any:
    """
    Rewrite mapping keys that MongoDB rejects as field names.

    Model output occasionally carries keys such as ``"v1.2"`` or ``"$ref"``;
    dots become underscores and a leading ``$`` is dropped.
    """
    if isinstance(value, dict):
        cleaned = {}
        for key, item in value.items():
            key = str(key).replace(".", "_")
            if key.startswith("$"):
                key = key.lstrip("$") or "_"
            cleaned[key] = sanitize_document_keys(item)
        return cleaned
    if isinstance(value, list):
        return [sanitize_document_keys(item) for item in value]
    return value


class Lesson(BaseModel):
    """Lesson generated for a course module"""
    title: str
    content: str = ""


class CourseModule(BaseModel):
    """Module generated from one contiguous slice of the source"""
    module_index: int = Field(alias="moduleIndex")
    title: str
    description: str = ""
    lessons: List[Lesson] = Field(default_factory=list)
    position_label: Optional[str] = Field(default=None, alias="positionLabel")
    word_count: int = Field(default=0, alias="wordCount")
    fallback: bool = False
    error: Optional[str] = None

    model_config = {"populate_by_name": True}


class Course(Document):
    """Course database model"""
    title: str
    source_content: str
    target_audience: Optional[str] = None
    module_count: int = 3
    provider: Optional[str] = None
    analysis: Optional[Dict[str, Any]] = None
    modules: List[CourseModule] = Field(default_factory=list)
    fallback: bool = False
    status: str = "draft"  # draft, analyzed, generated
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: Optional[datetime] = None

    class Settings:
        name = "courses"

    def set_analysis(self, analysis: Dict[str, Any]) -> None:
        self.analysis = sanitize_document_keys(analysis)
        self.fallback = bool(analysis.get("fallback"))
        self.status = "analyzed"
        self.updated_at = _utcnow()

    def set_modules(self, modules: List[Dict[str, Any]]) -> None:
        self.modules = [CourseModule.model_validate(sanitize_document_keys(m)) for m in modules]
        self.fallback = self.fallback or any(m.fallback for m in self.modules)
        self.status = "generated"
        self.updated_at = _utcnow()

    def validate_course(self) -> List[str]:
        """Validate course data and return list of errors"""
        errors = []
        if not self.title.strip():
            errors.append("Title is required")
        if not self.source_content.strip():
            errors.append("Source content is required")
        if self.module_count < 1:
            errors.append("Module count must be at least 1")
        return errors


class CourseSummary(BaseModel):
    """List entry for a stored course"""
    id: str
    title: str
    status: str
    module_count: int
    fallback: bool = False
    created_at: datetime
    updated_at: Optional[datetime] = None


class CourseResponse(BaseModel):
    """Response model for course API"""
    id: str
    title: str
    target_audience: Optional[str] = None
    module_count: int
    provider: Optional[str] = None
    analysis: Optional[Dict[str, Any]] = None
    modules: List[CourseModule] = Field(default_factory=list)
    fallback: bool = False
    status: str
    source_length: int
    created_at: datetime
    updated_at: Optional[datetime] = None

    @classmethod
    def from_course(cls, course: Course) -> "CourseResponse":
        return cls(
            id=str(course.id),
            title=course.title,
            target_audience=course.target_audience,
            module_count=course.module_count,
            provider=course.provider,
            analysis=course.analysis,
            modules=course.modules,
            fallback=course.fallback,
            status=course.status,
            source_length=len(course.source_content),
            created_at=course.created_at,
            updated_at=course.updated_at,
        )


class CreateCourseRequest(BaseModel):
    """Request model for creating a course"""
    title: str
    source_content: str = Field(min_length=1)
    target_audience: Optional[str] = None
    module_count: int = Field(default=3, ge=1, le=20)
    provider: Optional[str] = None


class AnalyzeCourseRequest(BaseModel):
    """Request model for (re)analyzing a course source"""
    provider: Optional[str] = None
    prerequisites: Optional[List[str]] = None


class GenerateCourseRequest(BaseModel):
    """Request model for generating course modules"""
    module_count: Optional[int] = Field(default=None, ge=1, le=20)
    provider: Optional[str] = None
