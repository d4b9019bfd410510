"""
Gemini API client implementation.

Provides async HTTP client for the Generative Language REST API.
Implements BaseAIClient protocol for model discovery and text generation.

Provider failures are mapped to ErrorKind here, once, so the executor
never has to look at Gemini's error wording.
"""

import logging
import re

import httpx

from learnflow.config import Settings
from learnflow.models.schemas import ModelDescriptor
from learnflow.services.ai_clients.base import (
    AIClientConfig,
    AIClientConnectionError,
    AIClientResponseError,
    AIClientTimeoutError,
    BaseAIClientImpl,
    ChatUsage,
)
from learnflow.services.quota_classifier import ErrorKind, error_kind_from_response

logger = logging.getLogger(__name__)

_DURATION_RE = re.compile(r"^([\d.]+)s$")


def parse_retry_delay(error_body: dict) -> float | None:
    """
    Extract the RetryInfo delay from a Gemini error payload.

    Args:
        error_body: Parsed JSON body ({"error": {"details": [...]}})

    Returns:
        Delay in seconds, or None if the payload has no RetryInfo
    """
    details = error_body.get("error", {}).get("details", []) or []
    for detail in details:
        if not str(detail.get("@type", "")).endswith("RetryInfo"):
            continue
        match = _DURATION_RE.match(str(detail.get("retryDelay", "")))
        if match:
            return float(match.group(1))
    return None


def _descriptor_from_api(entry: dict) -> ModelDescriptor:
    """Convert a models.list entry into a ModelDescriptor."""
    name = entry.get("name", "")
    if name.startswith("models/"):
        name = name[len("models/"):]

    return ModelDescriptor(
        name=name,
        display_name=entry.get("displayName", name),
        description=entry.get("description", ""),
        input_token_limit=entry.get("inputTokenLimit", 30000),
        output_token_limit=entry.get("outputTokenLimit", 2048),
        supported_operations=entry.get("supportedGenerationMethods", []),
        temperature=entry.get("temperature", 0.7),
        top_p=entry.get("topP", 0.95),
        top_k=entry.get("topK", 40),
    )


class GeminiClient(BaseAIClientImpl):
    """
    Async HTTP client for Gemini models.

    Example:
        async with GeminiClient.from_settings(settings) as client:
            models = await client.list_models()
            text, usage = await client.generate("Hello!", model="gemini-2.5-flash")
    """

    provider = "gemini"

    def __init__(
        self,
        config: AIClientConfig,
        http_client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize Gemini client.

        Args:
            config: AI client configuration with API key and base URL
            http_client: Optional pre-built httpx client (tests use MockTransport)

        Raises:
            ValueError: If API key is not provided
        """
        super().__init__(config)

        if not config.api_key:
            raise ValueError(
                "GeminiClient requires API key. "
                "Set GEMINI_API_KEY environment variable."
            )

        self.http_client = http_client or httpx.AsyncClient(timeout=config.timeout)

    @classmethod
    def from_settings(cls, settings: Settings) -> "GeminiClient":
        """
        Create GeminiClient from application settings.

        Args:
            settings: Application settings

        Returns:
            Configured GeminiClient instance
        """
        config = AIClientConfig(
            base_url=settings.gemini_url,
            timeout=settings.llm_timeout,
            api_key=settings.gemini_api_key,
        )
        return cls(config=config)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.http_client.aclose()

    async def list_models(self) -> list[ModelDescriptor]:
        """
        List models via GET /models.

        Returns:
            All models reported by the API (unfiltered)

        Raises:
            AIClientError: If the listing call fails
        """
        data = await self._request("GET", "/models", model=None)
        models = [_descriptor_from_api(entry) for entry in data.get("models", [])]
        logger.debug(f"Gemini listed {len(models)} models")
        return models

    async def generate(
        self,
        prompt: str,
        model: str,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        system: str | None = None,
    ) -> tuple[str, ChatUsage]:
        """
        Generate text via POST /models/{model}:generateContent.

        Args:
            prompt: User prompt
            model: Model name (without "models/" prefix)
            temperature: Sampling temperature
            max_tokens: Max output tokens (default: model default)
            system: Optional system instruction

        Returns:
            Tuple of (generated_text, ChatUsage)

        Raises:
            AIClientError: If generation fails
        """
        generation_config: dict = {"temperature": temperature}
        if max_tokens is not None:
            generation_config["maxOutputTokens"] = max_tokens

        request_body: dict = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": generation_config,
        }
        if system:
            request_body["systemInstruction"] = {"parts": [{"text": system}]}

        logger.debug(f"Gemini generate: model={model}, prompt length: {len(prompt)}")

        data = await self._request(
            "POST", f"/models/{model}:generateContent", model=model, json=request_body
        )

        candidates = data.get("candidates") or []
        parts = candidates[0].get("content", {}).get("parts", []) if candidates else []
        text = "".join(part.get("text", "") for part in parts)

        if not text.strip():
            finish_reason = candidates[0].get("finishReason") if candidates else None
            block_reason = data.get("promptFeedback", {}).get("blockReason")
            reason = block_reason or finish_reason or "no candidates"
            logger.error(f"Empty response from Gemini! Model: {model}, reason: {reason}")
            raise AIClientResponseError(
                f"Empty response from model ({reason})",
                response_body=str(data)[:500],
                kind=ErrorKind.INVALID_REQUEST,
                provider=self.provider,
                model=model,
                status_code=200,
            )

        metadata = data.get("usageMetadata", {})
        usage = ChatUsage(
            input_tokens=metadata.get("promptTokenCount", 0),
            output_tokens=metadata.get("candidatesTokenCount", 0),
        )

        logger.info(
            f"Gemini response: {len(text)} chars, "
            f"tokens: {usage.input_tokens} in / {usage.output_tokens} out"
        )
        return text, usage

    async def _request(
        self,
        method: str,
        path: str,
        model: str | None,
        json: dict | None = None,
    ) -> dict:
        """Send a request and translate failures into AIClientError."""
        url = f"{self.config.base_url}{path}"

        try:
            response = await self.http_client.request(
                method,
                url,
                params={"key": self.config.api_key},
                json=json,
            )
            response.raise_for_status()
            return response.json()

        except httpx.TimeoutException as e:
            logger.error(f"Gemini timeout ({model or 'models.list'}): {e}")
            raise AIClientTimeoutError(
                "Gemini request timeout",
                provider=self.provider,
                model=model,
                original_error=e,
            ) from e

        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            body_text = e.response.text[:2000]
            message = body_text
            retry_after = None
            try:
                body = e.response.json()
                message = body.get("error", {}).get("message", body_text)
                retry_after = parse_retry_delay(body)
            except ValueError:
                pass

            kind = error_kind_from_response(status, body_text)
            logger.error(f"Gemini API error: {status} ({kind.value}) - {message[:200]}")
            raise AIClientResponseError(
                f"Gemini API error: {message}",
                kind=kind,
                provider=self.provider,
                model=model,
                status_code=status,
                retry_after_seconds=retry_after,
                response_body=body_text,
                original_error=e,
            ) from e

        except httpx.TransportError as e:
            logger.error(f"Cannot connect to Gemini: {e}")
            raise AIClientConnectionError(
                f"Cannot connect to Gemini at {self.config.base_url}",
                provider=self.provider,
                model=model,
                original_error=e,
            ) from e
