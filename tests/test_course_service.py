"""Tests for course analysis and module generation orchestration."""

import json

import pytest

from conftest import make_paragraphs
from services.course_service import CourseGenerationService
from services.response_parser import parse_ai_response

MODULE_JSON = json.dumps({
    "title": "Generated module",
    "description": "About this part",
    "lessons": [{"title": "Lesson one", "content": "Body"}],
})


class FactoryRecorder:
    """request_fn_factory stand-in that hands out one shared request function."""

    def __init__(self, request_fn):
        self.request_fn = request_fn
        self.calls = []

    def __call__(self, operation, provider=None):
        self.calls.append((operation, provider))
        return self.request_fn


def make_service(request_fn):
    factory = FactoryRecorder(request_fn)
    return CourseGenerationService(request_fn_factory=factory, batch_size=3, batch_delay=0), factory


class TestAnalyzeSource:
    """Tests for CourseGenerationService.analyze_source."""

    @pytest.mark.asyncio
    async def test_small_source_uses_one_request(self, no_api_keys, fake_request, valid_analysis_json, valid_analysis):
        request = fake_request(valid_analysis_json)
        service, factory = make_service(request)

        analysis = await service.analyze_source("A short source about memory.", target_audience="Students")

        assert analysis == valid_analysis
        assert len(request.prompts) == 1
        assert "Intended audience: Students" in request.prompts[0]
        assert factory.calls == [("analysis", "openai")]

    @pytest.mark.asyncio
    async def test_unparseable_reply_becomes_enhanced_fallback(self, no_api_keys, fake_request):
        service, _ = make_service(fake_request("I'd rather not."))

        analysis = await service.analyze_source("Spaced Repetition works. " * 10)

        assert analysis["fallback"] is True
        assert analysis["enhanced"] is True
        assert "contentInsights" in analysis

    @pytest.mark.asyncio
    async def test_request_failure_becomes_enhanced_fallback(self, no_api_keys, fake_request):
        def reply(prompt):
            raise RuntimeError("upstream down")

        service, _ = make_service(fake_request(reply))
        analysis = await service.analyze_source("Some source text.", prerequisites=["Algebra"])

        assert analysis["fallback"] is True
        assert analysis["error"] == "upstream down"
        assert analysis["courseBlueprint"]["prerequisites"] == ["Algebra"]

    @pytest.mark.asyncio
    async def test_large_source_is_chunked_and_merged(self, no_api_keys, fake_request, valid_analysis_json):
        request = fake_request(valid_analysis_json)
        service, _ = make_service(request)

        analysis = await service.analyze_source("This is a sentence. " * 1000)

        assert "fallback" not in analysis
        assert analysis["chunkProcessingInfo"]["totalChunks"] == len(request.prompts)
        assert len(request.prompts) > 1
        assert analysis["sourceAnalysis"]["keyTerms"] == ["spacing effect", "retrieval practice"]

    @pytest.mark.asyncio
    async def test_all_chunks_failing_becomes_enhanced_fallback(self, no_api_keys, fake_request):
        service, _ = make_service(fake_request("not json"))

        analysis = await service.analyze_source("This is a sentence. " * 1000)

        assert analysis["fallback"] is True
        assert "No chunks" in analysis["error"]

    @pytest.mark.asyncio
    async def test_empty_source_raises(self, fake_request):
        service, _ = make_service(fake_request("{}"))

        with pytest.raises(ValueError):
            await service.analyze_source("   ")


class TestGenerateModules:
    """Tests for CourseGenerationService.generate_modules."""

    @pytest.mark.asyncio
    async def test_modules_follow_document_order(self, fake_request):
        request = fake_request(MODULE_JSON)
        service, factory = make_service(request)

        modules = await service.generate_modules(make_paragraphs(6), 3)

        assert [m["moduleIndex"] for m in modules] == [0, 1, 2]
        assert all(m["fallback"] is False for m in modules)
        assert modules[0]["lessons"] == [{"title": "Lesson one", "content": "Body"}]
        assert factory.calls == [("lessonGeneration", None)]

        first_prompt = next(p for p in request.prompts if "module 1 of 3" in p)
        assert "Paragraph 1 begins" in first_prompt
        assert "Paragraph 6 begins" not in first_prompt

    @pytest.mark.asyncio
    async def test_failed_module_is_built_from_source(self, fake_request, valid_analysis):
        def reply(prompt):
            if "module 2 of 3" in prompt:
                raise RuntimeError("rate limited")
            return MODULE_JSON

        service, _ = make_service(fake_request(reply))
        modules = await service.generate_modules(make_paragraphs(6), 3, analysis=valid_analysis)

        assert [m["fallback"] for m in modules] == [False, True, False]
        fallback = modules[1]
        assert fallback["error"] == "rate limited"
        assert fallback["title"] == "Scheduling reviews"
        assert fallback["lessons"]
        assert fallback["lessons"][0]["content"].startswith("# Scheduling reviews - Lesson 1")
        assert "Paragraph 3 begins" in fallback["lessons"][0]["content"]

    @pytest.mark.asyncio
    async def test_reply_without_lessons_falls_back(self, fake_request):
        service, _ = make_service(fake_request('{"title": "Empty"}'))
        modules = await service.generate_modules(make_paragraphs(2), 2)

        assert all(m["fallback"] for m in modules)
        assert modules[0]["title"] == "Module 1"

    @pytest.mark.asyncio
    async def test_analysis_shapes_the_prompt(self, fake_request, valid_analysis):
        request = fake_request(MODULE_JSON)
        service, _ = make_service(request)

        await service.generate_modules(make_paragraphs(2), 1, analysis=valid_analysis)

        assert "Target audience: Students" in request.prompts[0]
        assert "spacing effect" in request.prompts[0]

    @pytest.mark.asyncio
    async def test_wrong_typed_analysis_fields_do_not_force_fallback(self, fake_request):
        analysis = parse_ai_response('{"sourceAnalysis": {"keyTerms": 5}, "courseBlueprint": {"syllabus": null}}')
        service, _ = make_service(fake_request(MODULE_JSON))

        modules = await service.generate_modules(make_paragraphs(4), 2, analysis=analysis)

        assert [m["fallback"] for m in modules] == [False, False]
