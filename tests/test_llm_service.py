"""Tests for the LLM client, using httpx.MockTransport instead of the network."""

import json

import httpx
import pytest

from services.llm_service import (
    LLMRequestError,
    LLMService,
    classify_error,
    failover_provider,
    select_provider,
)


def openai_reply(text: str) -> httpx.Response:
    return httpx.Response(200, json={"choices": [{"message": {"content": text}}]})


def gemini_reply(text: str) -> httpx.Response:
    return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]})


class Recorder:
    """MockTransport handler that replays responses in order and records requests."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response

    def service(self, **kwargs) -> LLMService:
        kwargs.setdefault("retry_delay", 0)
        return LLMService(transport=httpx.MockTransport(self), **kwargs)


class TestSelectProvider:

    def test_openai_is_primary(self):
        assert select_provider("analysis", 1000, ["openai", "gemini"]) == "openai"

    def test_large_content_moves_to_gemini(self):
        assert select_provider("analysis", 50000, ["openai", "gemini"]) == "gemini"

    def test_large_content_stays_on_openai_without_gemini_key(self):
        assert select_provider("analysis", 50000, ["openai"]) == "openai"

    def test_gemini_when_openai_missing(self):
        assert select_provider("analysis", 1000, ["gemini"]) == "gemini"

    def test_preference_when_no_keys(self):
        assert select_provider("analysis", 1000, [], preferred="gemini") == "gemini"


class TestFailoverProvider:

    @pytest.mark.parametrize("error_type", ["QUOTA_EXCEEDED", "RATE_LIMIT", "INVALID_API_KEY", "SERVER_ERROR"])
    def test_retryable_errors_switch_provider(self, error_type):
        assert failover_provider("openai", error_type, ["openai", "gemini"]) == "gemini"
        assert failover_provider("gemini", error_type, ["openai", "gemini"]) == "openai"

    def test_other_errors_do_not_switch(self):
        assert failover_provider("openai", "INVALID_REQUEST", ["openai", "gemini"]) is None

    def test_no_key_for_other_provider(self):
        assert failover_provider("openai", "RATE_LIMIT", ["openai"]) is None


class TestClassifyError:

    @pytest.mark.parametrize("provider,status,message,code,expected", [
        ("openai", 429, "You exceeded your current quota", None, "QUOTA_EXCEEDED"),
        ("openai", 429, "slow down", "insufficient_quota", "QUOTA_EXCEEDED"),
        ("openai", 429, "slow down", None, "RATE_LIMIT"),
        ("gemini", 429, "quota", None, "RATE_LIMIT"),
        ("openai", 401, "bad key", None, "INVALID_API_KEY"),
        ("openai", 503, "", None, "SERVER_ERROR"),
        ("gemini", 400, "Blocked by safety settings", None, "CONTENT_FILTERED"),
        ("gemini", 400, "model not found", None, "MODEL_NOT_FOUND"),
        ("openai", 400, "bad request", None, "INVALID_REQUEST"),
        ("openai", 418, "teapot", None, "UNKNOWN"),
    ])
    def test_classification(self, provider, status, message, code, expected):
        assert classify_error(provider, status, message, code) == expected


class TestTokenLimits:

    def test_requests_are_clamped_to_model_ceiling(self):
        service = LLMService()
        assert service.validate_token_request(20000) == 16284
        assert service.validate_token_request(3000) == 3000

    def test_operation_limits(self):
        service = LLMService()
        assert service.get_token_limit("analysis") == 4000
        assert service.get_token_limit("lessonGeneration") == 3000
        assert service.get_token_limit("somethingElse") == 4000


class TestMakeRequest:
    """Tests for LLMService.make_request."""

    @pytest.mark.asyncio
    async def test_openai_request(self, openai_only):
        recorder = Recorder(openai_reply("  hello  "))
        text = await recorder.service().make_request("Say hello", operation="analysis")

        assert text == "hello"
        request = recorder.requests[0]
        assert request.url.path == "/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-test-openai"
        body = json.loads(request.content)
        assert body["messages"] == [{"role": "user", "content": "Say hello"}]
        assert body["max_tokens"] == 4000

    @pytest.mark.asyncio
    async def test_gemini_request(self, both_api_keys):
        recorder = Recorder(gemini_reply("from gemini"))
        text = await recorder.service().make_request("prompt", provider="gemini", max_tokens=500)

        assert text == "from gemini"
        request = recorder.requests[0]
        assert request.url.path.endswith("/models/gemini-1.5-pro:generateContent")
        assert request.url.params["key"] == "test-gemini-key"
        assert json.loads(request.content)["generationConfig"]["maxOutputTokens"] == 500

    @pytest.mark.asyncio
    async def test_quota_error_fails_over_to_gemini(self, both_api_keys):
        recorder = Recorder(
            httpx.Response(429, json={"error": {"message": "quota exceeded", "code": "insufficient_quota"}}),
            gemini_reply("rescued"),
        )
        text = await recorder.service().make_request("prompt", provider="openai")

        assert text == "rescued"
        assert [r.url.host for r in recorder.requests] == [
            "api.openai.com", "generativelanguage.googleapis.com"
        ]

    @pytest.mark.asyncio
    async def test_transient_error_is_retried(self, openai_only):
        recorder = Recorder(httpx.Response(500, json={"error": {"message": "oops"}}), openai_reply("ok"))
        text = await recorder.service().make_request("prompt")

        assert text == "ok"
        assert len(recorder.requests) == 2

    @pytest.mark.asyncio
    async def test_retries_are_exhausted(self, openai_only):
        recorder = Recorder(httpx.Response(500, text="down"))

        with pytest.raises(LLMRequestError) as excinfo:
            await recorder.service(max_retries=3).make_request("prompt")

        assert excinfo.value.error_type == "MAX_RETRIES_EXCEEDED"
        assert len(recorder.requests) == 3

    @pytest.mark.asyncio
    async def test_non_retryable_error_raises_immediately(self, openai_only):
        recorder = Recorder(httpx.Response(400, json={"error": {"message": "bad request"}}))

        with pytest.raises(LLMRequestError) as excinfo:
            await recorder.service().make_request("prompt")

        assert excinfo.value.error_type == "INVALID_REQUEST"
        assert excinfo.value.status_code == 400
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_missing_key_raises_without_network(self, no_api_keys):
        recorder = Recorder(openai_reply("unused"))

        with pytest.raises(LLMRequestError) as excinfo:
            await recorder.service().make_request("prompt")

        assert excinfo.value.error_type == "INVALID_API_KEY"
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_network_errors_are_retried(self, openai_only):
        recorder = Recorder(httpx.ConnectError("connection refused"), openai_reply("back"))
        assert await recorder.service().make_request("prompt") == "back"

    @pytest.mark.asyncio
    async def test_unexpected_response_format(self, openai_only):
        recorder = Recorder(httpx.Response(200, json={"unexpected": True}))

        with pytest.raises(LLMRequestError) as excinfo:
            await recorder.service().make_request("prompt")

        assert excinfo.value.error_type == "INVALID_RESPONSE"


class TestRequestFnAndHealth:

    @pytest.mark.asyncio
    async def test_request_fn_binds_operation(self, openai_only):
        recorder = Recorder(openai_reply("bound"))
        request_fn = recorder.service().request_fn("lessonGeneration")

        assert await request_fn("prompt") == "bound"
        assert json.loads(recorder.requests[0].content)["max_tokens"] == 3000

    @pytest.mark.asyncio
    async def test_health_check(self, openai_only):
        health = await LLMService().health_check()

        assert health["healthy"] is True
        assert health["providers"] == ["openai"]

    @pytest.mark.asyncio
    async def test_health_check_without_keys(self, no_api_keys):
        health = await LLMService().health_check()
        assert health["healthy"] is False
