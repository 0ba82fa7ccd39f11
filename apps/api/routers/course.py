from typing import List
import logging
from fastapi import APIRouter, HTTPException, Query
from models.course import (
    Course,
    CourseResponse,
    CourseSummary,
    CreateCourseRequest,
    AnalyzeCourseRequest,
    GenerateCourseRequest,
)
from database import is_connected
from services.course_service import course_service
from utils.error_handler import ErrorHandler

logger = logging.getLogger(__name__)
router = APIRouter()


def _require_database() -> None:
    if not is_connected():
        raise ErrorHandler.handle_service_unavailable("Database", "course storage is not connected")


async def _get_course_or_404(course_id: str) -> Course:
    _require_database()
    course_obj_id = ErrorHandler.validate_object_id(course_id, "course")
    course = await Course.get(course_obj_id)
    if not course:
        raise ErrorHandler.handle_not_found("Course", course_id)
    return course


@router.post("/course", response_model=CourseResponse)
async def create_course(request: CreateCourseRequest):
    """Store source material as a new draft course"""
    try:
        _require_database()
        course = Course(
            title=request.title,
            source_content=request.source_content,
            target_audience=request.target_audience,
            module_count=request.module_count,
            provider=request.provider,
        )

        errors = course.validate_course()
        if errors:
            raise ErrorHandler.handle_bad_request("; ".join(errors))

        await course.insert()
        logger.info(f"Created course {course.id} ({len(course.source_content)} chars)")

        return CourseResponse.from_course(course)

    except HTTPException:
        raise
    except Exception as e:
        raise ErrorHandler.handle_service_error("create course", e)


@router.get("/courses", response_model=List[CourseSummary])
async def get_courses(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0)
):
    """Get all courses with pagination"""
    try:
        _require_database()
        courses = await Course.find().skip(offset).limit(limit).sort(-Course.created_at).to_list()

        return [
            CourseSummary(
                id=str(course.id),
                title=course.title,
                status=course.status,
                module_count=course.module_count,
                fallback=course.fallback,
                created_at=course.created_at,
                updated_at=course.updated_at
            )
            for course in courses
        ]

    except HTTPException:
        raise
    except Exception as e:
        raise ErrorHandler.handle_service_error("fetch courses", e)


@router.get("/course/{course_id}", response_model=CourseResponse)
async def get_course(course_id: str):
    """Get a specific course by ID"""
    try:
        course = await _get_course_or_404(course_id)
        return CourseResponse.from_course(course)

    except HTTPException:
        raise
    except Exception as e:
        raise ErrorHandler.handle_service_error("fetch course", e)


@router.delete("/course/{course_id}")
async def delete_course(course_id: str):
    """Delete a course"""
    try:
        course = await _get_course_or_404(course_id)
        await course.delete()
        return {"message": "Course deleted successfully"}

    except HTTPException:
        raise
    except Exception as e:
        raise ErrorHandler.handle_service_error("delete course", e)


@router.post("/course/{course_id}/analyze", response_model=CourseResponse)
async def analyze_course(course_id: str, request: AnalyzeCourseRequest = AnalyzeCourseRequest()):
    """Analyze the course source material and store the result"""
    try:
        course = await _get_course_or_404(course_id)

        analysis = await course_service.analyze_source(
            course.source_content,
            provider=request.provider or course.provider,
            target_audience=course.target_audience,
            prerequisites=request.prerequisites,
        )
        if analysis.get("fallback"):
            logger.warning(f"Course {course_id} analyzed with fallback: {analysis.get('error')}")

        course.set_analysis(analysis)
        await course.save()

        return CourseResponse.from_course(course)

    except HTTPException:
        raise
    except Exception as e:
        raise ErrorHandler.handle_service_error("analyze course", e)


@router.post("/course/{course_id}/generate", response_model=CourseResponse)
async def generate_course(course_id: str, request: GenerateCourseRequest = GenerateCourseRequest()):
    """Generate one module per slice of the source material"""
    try:
        course = await _get_course_or_404(course_id)
        module_count = request.module_count or course.module_count

        modules = await course_service.generate_modules(
            course.source_content,
            module_count,
            analysis=course.analysis,
            provider=request.provider or course.provider,
        )

        course.module_count = module_count
        course.set_modules(modules)
        await course.save()

        fallback_count = sum(1 for m in course.modules if m.fallback)
        logger.info(f"Generated {len(course.modules)} modules for course {course_id} "
                    f"({fallback_count} from fallback)")

        return CourseResponse.from_course(course)

    except HTTPException:
        raise
    except Exception as e:
        raise ErrorHandler.handle_service_error("generate course", e)
