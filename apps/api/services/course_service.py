import logging
from dataclasses import asdict
from typing import Any, Awaitable, Callable, Dict, List, Optional

from config import settings
from services.chunk_processor import RequestFn, process_chunks, run_in_batches
from services.content_chunker import chunk_config_for, chunk_content
from services.content_distributor import (
    ModuleContentAssignment,
    distribute_content,
    validate_distribution,
)
from services.insight_extractor import (
    calculate_optimal_lessons,
    create_enhanced_fallback,
    extract_insights,
    generate_lesson_fallback,
)
from services.llm_service import llm_service, select_provider
from services.response_parser import parse_ai_response, parse_json_object
from services.result_merger import NoSuccessfulChunksError, merge_chunk_results

logger = logging.getLogger(__name__)

RequestFnFactory = Callable[[str, Optional[str]], Callable[[str], Awaitable[str]]]


def build_analysis_prompt(content: str, target_audience: Optional[str] = None) -> str:
    audience = f"\nIntended audience: {target_audience}\n" if target_audience else ""

    return f"""You are designing a course from the source material below.
{audience}
SOURCE MATERIAL:
\"\"\"{content}\"\"\"

Analyze the material and respond with valid JSON only, in this shape:
{{
  "sourceAnalysis": {{
    "keyClaims": ["claim1", "claim2"],
    "keyTerms": ["term1", "term2"],
    "frameworks": ["framework1"],
    "examples": ["example1"],
    "authorVoice": "short description of tone"
  }},
  "courseBlueprint": {{
    "targetAudience": "who this course is for",
    "prerequisites": ["prerequisite1"],
    "learningOutcomes": ["outcome1"],
    "syllabus": ["topic1", "topic2"]
  }},
  "contentGaps": {{
    "missingConcepts": ["concept1"],
    "needsVerification": ["statement1"],
    "suggestedAdditions": ["addition1"]
  }},
  "scopeOptions": {{
    "lite": {{"duration": "30 minutes", "modules": 2, "focus": "essentials"}},
    "core": {{"duration": "60 minutes", "modules": 3, "focus": "full coverage"}}
  }}
}}"""


def build_module_prompt(
    assignment: ModuleContentAssignment,
    module_count: int,
    lesson_count: int,
    analysis: Optional[Dict[str, Any]] = None
) -> str:
    context = ""
    if analysis:
        blueprint = analysis.get("courseBlueprint") or {}
        source = analysis.get("sourceAnalysis") or {}
        if blueprint.get("targetAudience"):
            context += f"Target audience: {blueprint['targetAudience']}\n"
        if source.get("keyTerms"):
            context += f"Course key terms: {', '.join(str(t) for t in source['keyTerms'][:10])}\n"

    return f"""Write module {assignment.module_index + 1} of {module_count} for a course.
{context}
Use ONLY the source excerpt below ({assignment.position_label} of the material).
Do not cover material from other parts of the source.

SOURCE EXCERPT:
\"\"\"{assignment.content}\"\"\"

Respond with valid JSON only, with exactly {lesson_count} lessons:
{{
  "title": "module title",
  "description": "one or two sentences",
  "lessons": [
    {{"title": "lesson title", "content": "lesson body in markdown"}}
  ]
}}"""


class CourseGenerationService:
    """Source analysis and per-module generation over the ingestion pipeline"""

    def __init__(
        self,
        request_fn_factory: Optional[RequestFnFactory] = None,
        batch_size: Optional[int] = None,
        batch_delay: Optional[float] = None
    ):
        self.request_fn_factory = request_fn_factory or llm_service.request_fn
        self.batch_size = batch_size if batch_size is not None else settings.chunk_batch_size
        self.batch_delay = batch_delay if batch_delay is not None else settings.chunk_batch_delay

    async def analyze_source(
        self,
        content: str,
        provider: Optional[str] = None,
        target_audience: Optional[str] = None,
        prerequisites: Optional[List[str]] = None
    ) -> Dict[str, Any]:
        """
        Produce a course analysis for the source content.

        Small sources go out as a single request; oversized ones are chunked,
        processed in batches and merged. Whenever the model output cannot be
        used, a content-derived fallback with the same shape is returned.
        """
        if not content or not content.strip():
            raise ValueError("Source content is empty")

        provider = provider or select_provider(
            "analysis", len(content), settings.available_providers(), settings.default_provider
        )
        config = chunk_config_for(provider)
        request_fn: RequestFn = self.request_fn_factory("analysis", provider)

        if len(content) <= config.max_chunk_size:
            logger.info(f"Analyzing {len(content)} chars in a single request ({provider})")
            try:
                response = await request_fn(build_analysis_prompt(content, target_audience))
            except Exception as e:
                logger.error(f"Analysis request failed: {e}")
                return create_enhanced_fallback(content, e, target_audience, prerequisites)

            analysis = parse_ai_response(response)
            if analysis.get("fallback"):
                return create_enhanced_fallback(
                    content, analysis.get("error") or "Unparseable analysis", target_audience, prerequisites
                )
            return analysis

        chunks = chunk_content(content, **asdict(config))
        logger.info(f"Analyzing {len(content)} chars in {len(chunks)} chunks ({provider})")

        results = await process_chunks(
            chunks,
            request_fn,
            operation="analysis",
            batch_size=self.batch_size,
            batch_delay=self.batch_delay
        )

        try:
            return merge_chunk_results(results, operation="analysis")
        except NoSuccessfulChunksError as e:
            logger.error(f"Chunked analysis failed: {e}")
            return create_enhanced_fallback(content, e, target_audience, prerequisites)

    async def generate_modules(
        self,
        content: str,
        module_count: int,
        analysis: Optional[Dict[str, Any]] = None,
        provider: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """One module per contiguous slice of the source, in document order"""
        assignments = distribute_content(content, module_count)

        if not validate_distribution(assignments, content):
            logger.warning("Module content distribution failed validation; continuing")

        lesson_count = calculate_optimal_lessons(content, module_count)["lessonsPerModule"]
        request_fn = self.request_fn_factory("lessonGeneration", provider)

        logger.info(f"Generating {module_count} modules with {lesson_count} lessons each")

        return await run_in_batches(
            [
                lambda a=assignment: self._generate_module(a, module_count, lesson_count, analysis, request_fn)
                for assignment in assignments
            ],
            self.batch_size,
            self.batch_delay
        )

    async def _generate_module(
        self,
        assignment: ModuleContentAssignment,
        module_count: int,
        lesson_count: int,
        analysis: Optional[Dict[str, Any]],
        request_fn: RequestFn
    ) -> Dict[str, Any]:
        try:
            response = await request_fn(build_module_prompt(assignment, module_count, lesson_count, analysis))
            module = parse_json_object(response)
            if module is None:
                raise ValueError("Unparseable module response")

            raw_lessons = module.get("lessons")
            lessons = [
                {
                    "title": str(lesson.get("title") or f"Lesson {number}"),
                    "content": str(lesson.get("content") or ""),
                }
                for number, lesson in enumerate(raw_lessons if isinstance(raw_lessons, list) else [], 1)
                if isinstance(lesson, dict)
            ]
            if not lessons:
                raise ValueError("Module response has no lessons")

            return {
                "moduleIndex": assignment.module_index,
                "title": str(module.get("title") or self._default_title(assignment, analysis)),
                "description": str(module.get("description") or ""),
                "lessons": lessons,
                "positionLabel": assignment.position_label,
                "wordCount": assignment.word_count,
                "fallback": False,
            }

        except Exception as e:
            logger.error(f"Module {assignment.module_index + 1} generation failed, using fallback: {e}")
            return self._fallback_module(assignment, lesson_count, analysis, e)

    def _default_title(self, assignment: ModuleContentAssignment, analysis: Optional[Dict[str, Any]]) -> str:
        syllabus = ((analysis or {}).get("courseBlueprint") or {}).get("syllabus") or []
        if assignment.module_index < len(syllabus) and isinstance(syllabus[assignment.module_index], str):
            return syllabus[assignment.module_index]
        return f"Module {assignment.module_index + 1}"

    def _fallback_module(
        self,
        assignment: ModuleContentAssignment,
        lesson_count: int,
        analysis: Optional[Dict[str, Any]],
        error: Exception
    ) -> Dict[str, Any]:
        title = self._default_title(assignment, analysis)
        lessons = []

        # Lessons split the module's own slice the same way modules split the source
        for part in distribute_content(assignment.content, lesson_count):
            number = part.module_index + 1
            lessons.append({
                "title": f"{title} - Lesson {number}",
                "content": generate_lesson_fallback(part.content, extract_insights(part.content), title, number),
            })

        return {
            "moduleIndex": assignment.module_index,
            "title": title,
            "description": f"Built from {assignment.position_label} of the source material",
            "lessons": lessons,
            "positionLabel": assignment.position_label,
            "wordCount": assignment.word_count,
            "fallback": True,
            "error": str(error),
        }


# Global service instance
course_service = CourseGenerationService()
