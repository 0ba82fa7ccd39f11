import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from config import settings

logger = logging.getLogger(__name__)

PROVIDERS = ("openai", "gemini")

# Errors after which the other provider is worth trying
FAILOVER_ERROR_TYPES = {"QUOTA_EXCEEDED", "RATE_LIMIT", "INVALID_API_KEY", "SERVER_ERROR"}
# Errors worth retrying against the same provider after a backoff
TRANSIENT_ERROR_TYPES = {"RATE_LIMIT", "SERVER_ERROR", "NETWORK_ERROR", "TIMEOUT"}

TOKEN_BUFFER = 100


class LLMRequestError(Exception):
    """Upstream model request failed"""

    def __init__(
        self,
        message: str,
        error_type: str = "UNKNOWN",
        provider: Optional[str] = None,
        status_code: Optional[int] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.provider = provider
        self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        return {
            "errorType": self.error_type,
            "message": self.message,
            "provider": self.provider,
            "status": self.status_code,
        }


def classify_error(provider: str, status_code: int, message: str = "", code: Optional[str] = None) -> str:
    """Map an upstream HTTP failure to an error type"""
    lowered = (message or "").lower()

    if status_code == 429:
        if provider == "openai" and ("quota" in lowered or "billing" in lowered or code == "insufficient_quota"):
            return "QUOTA_EXCEEDED"
        return "RATE_LIMIT"
    if status_code in (401, 403):
        return "INVALID_API_KEY"
    if status_code >= 500:
        return "SERVER_ERROR"
    if status_code == 400:
        if provider == "gemini" and "model not found" in lowered:
            return "MODEL_NOT_FOUND"
        if provider == "gemini" and "safety" in lowered:
            return "CONTENT_FILTERED"
        return "INVALID_REQUEST"
    if status_code == 404:
        return "MODEL_NOT_FOUND"
    return "UNKNOWN"


def select_provider(
    operation: str,
    content_size: int,
    available: List[str],
    preferred: str = "openai"
) -> str:
    """
    Choose the provider for a request.

    OpenAI is primary whenever it has a key. Gemini takes over when OpenAI has
    no key, or when the content exceeds OpenAI's per-request budget and Gemini
    has a key. With neither key the caller's preference is returned unchanged.
    """
    if "openai" in available:
        if content_size > settings.get_max_chunk_size("openai") and "gemini" in available:
            logger.info(f"{operation}: {content_size} chars exceeds the OpenAI budget, using gemini")
            return "gemini"
        return "openai"

    if "gemini" in available:
        logger.info(f"{operation}: openai key not available, using gemini")
        return "gemini"

    return preferred


def failover_provider(current: str, error_type: str, available: List[str]) -> Optional[str]:
    """The provider to switch to after ``error_type``, or None when failover is impossible"""
    if error_type not in FAILOVER_ERROR_TYPES:
        return None

    other = "gemini" if current == "openai" else "openai"
    if other not in available:
        return None

    logger.info(f"Auto-failover: {current} -> {other} ({error_type})")
    return other


class LLMService:
    """Client for the hosted chat models used by the course pipeline"""

    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        timeout: Optional[float] = None
    ):
        self.transport = transport
        self.max_retries = max_retries if max_retries is not None else settings.llm_max_retries
        self.retry_delay = retry_delay if retry_delay is not None else settings.llm_retry_delay
        self.timeout = timeout if timeout is not None else settings.llm_timeout

    def validate_token_request(self, max_tokens: int, operation: str = "default") -> int:
        """Clamp a token request to the model ceiling minus a safety buffer"""
        model_limit = settings.model_max_tokens
        safe_limit = min(max_tokens, model_limit - TOKEN_BUFFER)

        if max_tokens > model_limit:
            logger.warning(f"Token request {max_tokens} exceeds model limit {model_limit} "
                           f"for operation '{operation}', using {safe_limit}")

        return safe_limit

    def get_token_limit(self, operation: str) -> int:
        limit = settings.token_limits.get(operation, settings.token_limits["analysis"])
        return self.validate_token_request(limit, operation)

    async def make_request(
        self,
        prompt: str,
        operation: str = "analysis",
        provider: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None
    ) -> str:
        """
        Send one prompt to a model and return the response text.

        Retries transient failures with exponential backoff and fails over to
        the other provider when the current one is rate limited, out of quota,
        misconfigured or erroring.

        Raises:
            LLMRequestError: when every attempt failed or the error is not retryable
        """
        available = settings.available_providers()
        current = provider or select_provider(operation, len(prompt), available, settings.default_provider)
        tokens = self.validate_token_request(max_tokens or self.get_token_limit(operation), operation)
        temperature = settings.llm_temperature if temperature is None else temperature

        last_error: Optional[LLMRequestError] = None

        for attempt in range(self.max_retries):
            logger.info(f"LLM request attempt {attempt + 1} using {current} ({operation})")
            try:
                return await self._send(current, prompt, tokens, temperature)

            except LLMRequestError as e:
                last_error = e
                logger.warning(f"LLM request failed with {current} (attempt {attempt + 1}): "
                               f"{e.error_type} {e.message}")

                next_provider = failover_provider(current, e.error_type, available)
                if not next_provider and e.error_type not in TRANSIENT_ERROR_TYPES:
                    raise

                if attempt == self.max_retries - 1:
                    break

                if next_provider:
                    current = next_provider
                    continue

                await asyncio.sleep(self.retry_delay * (2 ** attempt))

        logger.error(f"All {self.max_retries} LLM request attempts exhausted for {operation}")
        raise LLMRequestError(
            f"Maximum retry attempts exceeded: {last_error.message if last_error else 'no attempts made'}",
            error_type="MAX_RETRIES_EXCEEDED",
            provider=current,
            status_code=last_error.status_code if last_error else None,
        )

    async def _send(self, provider: str, prompt: str, max_tokens: int, temperature: float) -> str:
        if provider not in PROVIDERS:
            raise LLMRequestError(f"Unsupported AI provider: {provider}", "UNSUPPORTED_PROVIDER", provider)

        api_key = settings.get_api_key(provider)
        if not api_key:
            raise LLMRequestError(
                f"No valid API key found for {provider}",
                "INVALID_API_KEY",
                provider,
            )

        if provider == "openai":
            url = f"{settings.openai_base_url}/chat/completions"
            kwargs = {
                "headers": {"Authorization": f"Bearer {api_key}"},
                "json": {
                    "model": settings.openai_model,
                    "messages": [{"role": "user", "content": prompt}],
                    "max_tokens": max_tokens,
                    "temperature": temperature,
                },
            }
        else:
            url = f"{settings.gemini_base_url}/models/{settings.gemini_model}:generateContent"
            kwargs = {
                "params": {"key": api_key},
                "json": {
                    "contents": [{"parts": [{"text": prompt}]}],
                    "generationConfig": {
                        "temperature": temperature,
                        "maxOutputTokens": max_tokens,
                    },
                },
            }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(url, **kwargs)
        except httpx.TimeoutException as e:
            raise LLMRequestError(f"Request to {provider} timed out after {self.timeout}s", "TIMEOUT", provider) from e
        except httpx.RequestError as e:
            raise LLMRequestError(f"Network or connection error: {e}", "NETWORK_ERROR", provider) from e

        if response.status_code != 200:
            try:
                error = response.json().get("error") or {}
            except ValueError:
                error = {}
            if not isinstance(error, dict):
                error = {"message": str(error)}
            message = error.get("message") or f"{provider} API error: {response.status_code}"
            raise LLMRequestError(
                message,
                classify_error(provider, response.status_code, message, error.get("code")),
                provider,
                response.status_code,
            )

        try:
            data = response.json()
            if provider == "openai":
                text = data["choices"][0]["message"]["content"] or ""
            else:
                text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise LLMRequestError(f"Unexpected {provider} response format: {e}", "INVALID_RESPONSE", provider) from e

        return text.strip()

    def request_fn(self, operation: str = "analysis", provider: Optional[str] = None) -> Callable[[str], Awaitable[str]]:
        """Bind operation and provider into a ``prompt -> text`` coroutine function"""
        async def _request(prompt: str) -> str:
            return await self.make_request(prompt, operation=operation, provider=provider)
        return _request

    async def health_check(self) -> Dict[str, Any]:
        """Report which providers are configured"""
        available = settings.available_providers()
        return {
            "healthy": bool(available),
            "providers": available,
            "default_provider": settings.default_provider,
            "models": {
                "openai": settings.openai_model,
                "gemini": settings.gemini_model,
            },
        }


# Global service instance
llm_service = LLMService()
