"""Tests for provider clients and their error mapping."""

import json

import anthropic
import httpx
import pytest

from learnflow.services.ai_clients import ClaudeClient, GeminiClient, create_client
from learnflow.services.ai_clients.base import (
    AIClientConfig,
    AIClientConnectionError,
    AIClientResponseError,
    ErrorKind,
)
from learnflow.services.ai_clients.gemini_client import parse_retry_delay
from learnflow.services.quota_classifier import ErrorClass, classify_error

BASE_URL = "https://gemini.test/v1beta"

QUOTA_BODY = {
    "error": {
        "code": 429,
        "message": "You exceeded your current quota. Please retry in 27.5s.",
        "status": "RESOURCE_EXHAUSTED",
        "details": [
            {
                "@type": "type.googleapis.com/google.rpc.QuotaFailure",
                "violations": [{"quotaMetric": "generate_content_free_tier_requests", "quotaValue": "50"}],
            },
            {"@type": "type.googleapis.com/google.rpc.RetryInfo", "retryDelay": "27s"},
        ],
    }
}


def gemini_with(handler) -> GeminiClient:
    transport = httpx.MockTransport(handler)
    return GeminiClient(
        AIClientConfig(base_url=BASE_URL, api_key="k"),
        http_client=httpx.AsyncClient(transport=transport),
    )


class TestGeminiClient:
    """Tests for GeminiClient against a mock transport."""

    async def test_list_models(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1beta/models"
            assert request.url.params["key"] == "k"
            return httpx.Response(
                200,
                json={
                    "models": [
                        {
                            "name": "models/gemini-2.5-flash",
                            "displayName": "Gemini 2.5 Flash",
                            "supportedGenerationMethods": ["generateContent", "countTokens"],
                        },
                        {"name": "models/text-embedding-004", "supportedGenerationMethods": ["embedContent"]},
                    ]
                },
            )

        async with gemini_with(handler) as client:
            models = await client.list_models()

        assert [m.name for m in models] == ["gemini-2.5-flash", "text-embedding-004"]
        assert models[0].supports("generateContent")
        assert not models[1].supports("generateContent")

    async def test_generate(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1beta/models/gemini-2.5-flash:generateContent"
            body = json.loads(request.content)
            assert body["systemInstruction"]["parts"][0]["text"] == "be brief"
            assert body["generationConfig"]["maxOutputTokens"] == 10
            return httpx.Response(
                200,
                json={
                    "candidates": [{"content": {"parts": [{"text": "Hello"}, {"text": " there"}]}}],
                    "usageMetadata": {"promptTokenCount": 3, "candidatesTokenCount": 2},
                },
            )

        async with gemini_with(handler) as client:
            text, usage = await client.generate("hi", "gemini-2.5-flash", max_tokens=10, system="be brief")

        assert text == "Hello there"
        assert usage.total_tokens == 5

    async def test_blocked_response_is_an_error(self):
        body = {"candidates": [{"finishReason": "SAFETY", "content": {"parts": []}}]}
        async with gemini_with(lambda request: httpx.Response(200, json=body)) as client:
            with pytest.raises(AIClientResponseError) as exc_info:
                await client.generate("hi", "gemini-2.5-flash")

        error = exc_info.value
        assert error.kind == ErrorKind.INVALID_REQUEST
        assert "SAFETY" in str(error)
        assert classify_error(error) == ErrorClass.FATAL

    async def test_quota_error(self):
        async with gemini_with(lambda request: httpx.Response(429, json=QUOTA_BODY)) as client:
            with pytest.raises(AIClientResponseError) as exc_info:
                await client.generate("hi", "gemini-2.5-pro")

        error = exc_info.value
        assert error.kind == ErrorKind.QUOTA_EXHAUSTED
        assert error.retry_after_seconds == 27
        assert error.status_code == 429
        assert classify_error(error) == ErrorClass.QUOTA_EXCEEDED

    async def test_rate_limit_error(self):
        body = {"error": {"code": 429, "message": "Too many requests", "status": "UNAVAILABLE"}}
        async with gemini_with(lambda request: httpx.Response(429, json=body)) as client:
            with pytest.raises(AIClientResponseError) as exc_info:
                await client.generate("hi", "gemini-2.5-flash")

        assert exc_info.value.kind == ErrorKind.RATE_LIMITED
        assert classify_error(exc_info.value) == ErrorClass.RETRYABLE

    async def test_missing_model(self):
        body = {"error": {"code": 404, "message": "models/gemini-9 is not found", "status": "NOT_FOUND"}}
        async with gemini_with(lambda request: httpx.Response(404, json=body)) as client:
            with pytest.raises(AIClientResponseError) as exc_info:
                await client.generate("hi", "gemini-9")

        assert classify_error(exc_info.value) == ErrorClass.NEEDS_FALLBACK

    async def test_connection_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with gemini_with(handler) as client:
            with pytest.raises(AIClientConnectionError) as exc_info:
                await client.list_models()

        assert classify_error(exc_info.value) == ErrorClass.RETRYABLE

    def test_requires_api_key(self):
        with pytest.raises(ValueError):
            GeminiClient(AIClientConfig(base_url=BASE_URL))

    def test_parse_retry_delay(self):
        assert parse_retry_delay(QUOTA_BODY) == 27.0
        assert parse_retry_delay({"error": {}}) is None


class TestClaudeClient:
    """Tests for Anthropic SDK error translation."""

    def _client(self) -> ClaudeClient:
        return ClaudeClient(AIClientConfig(base_url="https://api.anthropic.com", api_key="k"))

    def _status_error(self, cls, status: int, message: str, headers: dict | None = None):
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        response = httpx.Response(status, request=request, headers=headers or {})
        return cls(message, response=response, body={"error": {"message": message}})

    def test_rate_limit_with_retry_after(self):
        error = self._status_error(anthropic.RateLimitError, 429, "rate limited", {"retry-after": "20"})
        translated = self._client()._translate(error, model="claude-sonnet-4-5")

        assert translated.kind == ErrorKind.RATE_LIMITED
        assert translated.retry_after_seconds == 20.0
        assert classify_error(translated) == ErrorClass.RETRYABLE

    def test_overloaded(self):
        error = self._status_error(anthropic.InternalServerError, 529, "Overloaded")
        translated = self._client()._translate(error, model="claude-sonnet-4-5")

        assert translated.kind == ErrorKind.TRANSIENT

    def test_not_found(self):
        error = self._status_error(anthropic.NotFoundError, 404, "model: claude-9")
        translated = self._client()._translate(error, model="claude-9")

        assert classify_error(translated) == ErrorClass.NEEDS_FALLBACK

    def test_authentication(self):
        error = self._status_error(anthropic.AuthenticationError, 401, "invalid x-api-key")
        translated = self._client()._translate(error, model=None)

        assert classify_error(translated) == ErrorClass.FATAL


class TestCreateClient:
    def test_gemini(self, settings):
        assert isinstance(create_client(settings), GeminiClient)

    def test_unknown_provider(self, settings):
        settings.ai_provider = "ollama"
        with pytest.raises(ValueError):
            create_client(settings)
