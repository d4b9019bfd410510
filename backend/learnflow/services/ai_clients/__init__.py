"""
AI Clients package for generative-AI providers.

This package provides a unified interface for different providers:
- GeminiClient: Google Generative Language REST API (default)
- ClaudeClient: Anthropic Claude API

Usage:
    from learnflow.services.ai_clients import BaseAIClient, create_client

    async with create_client(settings) as client:
        text, usage = await client.generate("Hello", model="gemini-2.5-flash")
"""

from learnflow.config import Settings
from learnflow.services.ai_clients.base import (
    AIClientConfig,
    AIClientConnectionError,
    AIClientError,
    AIClientResponseError,
    AIClientTimeoutError,
    BaseAIClient,
    BaseAIClientImpl,
    ChatUsage,
    ErrorKind,
)
from learnflow.services.ai_clients.claude_client import ClaudeClient
from learnflow.services.ai_clients.gemini_client import GeminiClient

PROVIDERS: dict[str, type[BaseAIClientImpl]] = {
    "gemini": GeminiClient,
    "claude": ClaudeClient,
}


def create_client(settings: Settings) -> BaseAIClientImpl:
    """
    Create the provider client selected by settings.ai_provider.

    Raises:
        ValueError: If the provider is unknown or its API key is missing
    """
    provider = settings.ai_provider.lower()
    if provider not in PROVIDERS:
        raise ValueError(
            f"Unknown AI provider '{settings.ai_provider}'. Available: {list(PROVIDERS)}"
        )
    return PROVIDERS[provider].from_settings(settings)


__all__ = [
    # Protocol and base classes
    "BaseAIClient",
    "BaseAIClientImpl",
    "AIClientConfig",
    "ChatUsage",
    "ErrorKind",
    # Errors
    "AIClientError",
    "AIClientTimeoutError",
    "AIClientConnectionError",
    "AIClientResponseError",
    # Implementations
    "GeminiClient",
    "ClaudeClient",
    "create_client",
]
