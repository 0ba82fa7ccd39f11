"""Shared pytest fixtures for the course creator API tests."""

import asyncio
import json
from typing import Callable, Dict, List

import pytest

from config import settings


VALID_ANALYSIS = {
    "sourceAnalysis": {
        "keyClaims": ["Spaced repetition improves retention"],
        "keyTerms": ["spacing effect", "retrieval practice"],
        "frameworks": ["Leitner system"],
        "examples": ["Flashcards reviewed on a schedule"],
        "authorVoice": "Practical",
    },
    "courseBlueprint": {
        "targetAudience": "Students",
        "prerequisites": ["None"],
        "learningOutcomes": ["Plan a review schedule"],
        "syllabus": ["Memory basics", "Scheduling reviews"],
    },
    "contentGaps": {
        "missingConcepts": ["Interleaving"],
        "needsVerification": [],
        "suggestedAdditions": ["Case studies"],
    },
    "scopeOptions": {
        "lite": {"duration": "1 hour", "modules": 2, "focus": "Basics"},
        "core": {"duration": "3 hours", "modules": 3, "focus": "Everything"},
    },
}


def make_paragraphs(count: int, length: int = 150, prefix: str = "Paragraph") -> str:
    """Source text of ``count`` distinct paragraphs, each about ``length`` chars."""
    paragraphs = []
    for i in range(count):
        head = f"{prefix} {i + 1} begins here."
        filler = " word" * ((length - len(head)) // 5)
        paragraphs.append(f"{head}{filler}.")
    return "\n\n".join(paragraphs)


class FakeRequest:
    """Request function stand-in that records prompts and replays canned replies.

    Args:
        reply: Either a fixed string, or a callable mapping the prompt to a
            string; a callable may raise to simulate an upstream failure.
    """

    def __init__(self, reply):
        self.reply = reply
        self.prompts: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def __call__(self, prompt: str) -> str:
        self.prompts.append(prompt)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if callable(self.reply):
                return self.reply(prompt)
            return self.reply
        finally:
            self.in_flight -= 1


@pytest.fixture
def valid_analysis() -> Dict:
    return json.loads(json.dumps(VALID_ANALYSIS))


@pytest.fixture
def valid_analysis_json() -> str:
    return json.dumps(VALID_ANALYSIS)


@pytest.fixture
def fake_request() -> Callable[..., FakeRequest]:
    return FakeRequest


@pytest.fixture
def no_api_keys(monkeypatch):
    """Settings with no usable provider keys."""
    monkeypatch.setattr(settings, "openai_api_key", None)
    monkeypatch.setattr(settings, "gemini_api_key", None)


@pytest.fixture
def both_api_keys(monkeypatch):
    """Settings with both providers configured."""
    monkeypatch.setattr(settings, "openai_api_key", "sk-test-openai")
    monkeypatch.setattr(settings, "gemini_api_key", "test-gemini-key")


@pytest.fixture
def openai_only(monkeypatch):
    monkeypatch.setattr(settings, "openai_api_key", "sk-test-openai")
    monkeypatch.setattr(settings, "gemini_api_key", None)
