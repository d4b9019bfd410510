"""
Base AI client protocol for generative-AI providers.

Defines the interface that all provider clients must implement,
allowing interchangeable use of Gemini, Claude, and future providers.

Provider clients are the only place where raw provider failures are
translated into the structured ErrorKind taxonomy. Callers never have
to inspect provider error wording.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from learnflow.models.schemas import ModelDescriptor
from learnflow.services.quota_classifier import ErrorKind


@dataclass
class AIClientConfig:
    """
    Configuration for AI client instances.

    Attributes:
        base_url: API endpoint URL
        timeout: Request timeout in seconds
        api_key: API key for the provider
    """

    base_url: str
    timeout: float = 300.0
    api_key: str | None = None


@dataclass
class ChatUsage:
    """
    Token usage statistics from a generation response.

    Attributes:
        input_tokens: Tokens in the input prompt
        output_tokens: Tokens generated in response
    """

    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        """Total tokens used."""
        return self.input_tokens + self.output_tokens


@runtime_checkable
class BaseAIClient(Protocol):
    """
    Protocol defining the interface for provider clients.

    Example:
        async def summarize(client: BaseAIClient, model: str, text: str) -> str:
            response, usage = await client.generate(text, model=model)
            return response
    """

    provider: str

    async def list_models(self) -> list[ModelDescriptor]:
        """
        List models offered by the provider.

        Raises:
            AIClientError: If the listing call fails
        """
        ...

    async def generate(
        self,
        prompt: str,
        model: str,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        system: str | None = None,
    ) -> tuple[str, ChatUsage]:
        """
        Generate text from a prompt with a specific model.

        Returns:
            Tuple of (generated_text, ChatUsage)

        Raises:
            AIClientError: If generation fails
        """
        ...

    async def close(self) -> None:
        """Close the client and release resources."""
        ...


class AIClientError(Exception):
    """
    Base exception for AI client errors.

    Attributes:
        message: Error description
        kind: Structured failure code
        provider: AI provider name (gemini, claude, etc.)
        model: Model that caused the error
        status_code: HTTP status code if available
        retry_after_seconds: Provider retry hint if available
        original_error: Underlying exception if available
    """

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.UNKNOWN,
        provider: str | None = None,
        model: str | None = None,
        status_code: int | None = None,
        retry_after_seconds: float | None = None,
        original_error: Exception | None = None,
    ):
        self.message = message
        self.kind = kind
        self.provider = provider
        self.model = model
        self.status_code = status_code
        self.retry_after_seconds = retry_after_seconds
        self.original_error = original_error
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.provider:
            parts.append(f"provider={self.provider}")
        if self.model:
            parts.append(f"model={self.model}")
        if self.status_code:
            parts.append(f"status={self.status_code}")
        return " | ".join(parts)


class AIClientTimeoutError(AIClientError):
    """Raised when a request times out."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("kind", ErrorKind.TRANSIENT)
        super().__init__(message, **kwargs)


class AIClientConnectionError(AIClientError):
    """Raised when connection to AI service fails."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("kind", ErrorKind.TRANSIENT)
        super().__init__(message, **kwargs)


class AIClientResponseError(AIClientError):
    """
    Raised when AI service returns an error response.

    Attributes:
        response_body: Response body if available
    """

    def __init__(
        self,
        message: str,
        response_body: str | None = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.response_body = response_body


class BaseAIClientImpl(ABC):
    """
    Abstract base class for provider client implementations.

    Provides the async context manager protocol.

    Subclasses must implement:
        - list_models()
        - generate()
        - close()
    """

    provider: str = "unknown"

    def __init__(self, config: AIClientConfig):
        """
        Initialize AI client with configuration.

        Args:
            config: Client configuration with URL, timeout, etc.
        """
        self.config = config

    @abstractmethod
    async def list_models(self) -> list[ModelDescriptor]:
        """List models offered by the provider."""
        pass

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        model: str,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        system: str | None = None,
    ) -> tuple[str, ChatUsage]:
        """Generate text from a prompt."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the client and release resources."""
        pass

    async def __aenter__(self) -> "BaseAIClientImpl":
        """Context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        await self.close()
