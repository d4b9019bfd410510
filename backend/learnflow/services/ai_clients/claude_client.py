"""
Claude API client implementation.

Provides async client for Anthropic's Claude API.
Implements BaseAIClient protocol for model discovery and text generation.
"""

import logging

from anthropic import APIConnectionError, APIStatusError, APITimeoutError, AsyncAnthropic

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
from learnflow.services.quota_classifier import error_kind_from_response

logger = logging.getLogger(__name__)

# Claude models all use the Messages API; expose it under the operation
# name the catalog filters on.
CLAUDE_OPERATIONS = ["generateContent"]
DEFAULT_MAX_TOKENS = 4096


class ClaudeClient(BaseAIClientImpl):
    """
    Async client for Anthropic's Claude API.

    Example:
        async with ClaudeClient.from_settings(settings) as client:
            text, usage = await client.generate("Analyze this...", model="claude-sonnet-4-5")
    """

    provider = "claude"

    def __init__(self, config: AIClientConfig, client: AsyncAnthropic | None = None):
        """
        Initialize Claude client.

        Args:
            config: AI client configuration with API key
            client: Optional pre-built SDK client

        Raises:
            ValueError: If API key is not provided
        """
        super().__init__(config)

        if client is None and not config.api_key:
            raise ValueError(
                "ClaudeClient requires API key. "
                "Set ANTHROPIC_API_KEY environment variable."
            )

        # SDK-level retries are disabled: the executor owns retry policy.
        self.client = client or AsyncAnthropic(
            api_key=config.api_key,
            timeout=config.timeout,
            max_retries=0,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "ClaudeClient":
        """
        Create ClaudeClient from application settings.

        Raises:
            ValueError: If ANTHROPIC_API_KEY not set
        """
        config = AIClientConfig(
            base_url="https://api.anthropic.com",
            api_key=settings.anthropic_api_key,
            timeout=settings.llm_timeout,
        )
        return cls(config=config)

    async def close(self) -> None:
        """Close the client and release resources."""
        await self.client.close()
        logger.debug("ClaudeClient closed")

    async def list_models(self) -> list[ModelDescriptor]:
        """
        List models available to the API key.

        Raises:
            AIClientError: If the listing call fails
        """
        try:
            page = await self.client.models.list(limit=100)
        except (APITimeoutError, APIConnectionError, APIStatusError) as e:
            raise self._translate(e, model=None) from e

        return [
            ModelDescriptor(
                name=m.id,
                display_name=m.display_name,
                input_token_limit=200000,
                output_token_limit=DEFAULT_MAX_TOKENS,
                supported_operations=CLAUDE_OPERATIONS,
            )
            for m in page.data
        ]

    async def generate(
        self,
        prompt: str,
        model: str,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        system: str | None = None,
    ) -> tuple[str, ChatUsage]:
        """
        Generate text using the Messages API with a single user message.

        Returns:
            Tuple of (generated_text, ChatUsage)

        Raises:
            AIClientError: If generation fails
        """
        kwargs: dict = {
            "model": model,
            "max_tokens": max_tokens or DEFAULT_MAX_TOKENS,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            kwargs["system"] = system

        logger.debug(
            f"Claude generate: model={model}, "
            f"system={'yes' if system else 'no'}, max_tokens={kwargs['max_tokens']}"
        )

        try:
            response = await self.client.messages.create(**kwargs)
        except (APITimeoutError, APIConnectionError, APIStatusError) as e:
            raise self._translate(e, model=model) from e

        content = response.content[0].text
        usage = ChatUsage(
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )

        logger.info(
            f"Claude response: {len(content)} chars, "
            f"tokens: {usage.input_tokens} in / {usage.output_tokens} out"
        )
        return content, usage

    def _translate(self, e: Exception, model: str | None):
        """Map an SDK exception to the AIClientError family."""
        if isinstance(e, APITimeoutError):
            logger.error(f"Claude timeout: {e}")
            return AIClientTimeoutError(
                "Claude request timeout",
                provider=self.provider,
                model=model,
                original_error=e,
            )

        if isinstance(e, APIConnectionError):
            logger.error(f"Claude connection error: {e}")
            return AIClientConnectionError(
                f"Cannot connect to Claude API: {e}",
                provider=self.provider,
                model=model,
                original_error=e,
            )

        body = str(e.body) if e.body else ""
        retry_after = None
        header = e.response.headers.get("retry-after") if e.response is not None else None
        if header:
            try:
                retry_after = float(header)
            except ValueError:
                retry_after = None

        kind = error_kind_from_response(e.status_code, f"{e.message} {body}")
        logger.error(f"Claude API error: {e.status_code} ({kind.value}) - {e.message}")
        return AIClientResponseError(
            f"Claude API error: {e.message}",
            kind=kind,
            provider=self.provider,
            model=model,
            status_code=e.status_code,
            retry_after_seconds=retry_after,
            response_body=body or None,
            original_error=e,
        )
