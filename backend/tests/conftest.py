"""Shared fixtures and fakes for the test suite."""

from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

import pytest

from learnflow.config import Settings
from learnflow.models.schemas import ModelDescriptor, StageName, TaskProfile
from learnflow.services.ai_clients.base import AIClientResponseError, ChatUsage, ErrorKind
from learnflow.services.content_store import InMemoryContentStore
from learnflow.services.model_catalog import ModelCache, ModelCatalog
from learnflow.services.pipeline import ContentPipeline
from learnflow.services.stages.base import BaseStage, StageContext, StageRegistry

T0 = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Mutable UTC clock."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class MonotonicClock:
    """Mutable monotonic clock in seconds."""

    def __init__(self, value: float = 1000.0):
        self.value = value

    def __call__(self) -> float:
        return self.value


class RecordingSleep:
    """Async sleep that records delays instead of waiting."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FakeAIClient:
    """
    Provider client double.

    generate() delegates to `handler(prompt, model)` when set, otherwise
    returns "ok". list_models() returns `models` or raises `list_error`.
    """

    provider = "fake"

    def __init__(
        self,
        models: list[ModelDescriptor] | None = None,
        handler: Callable[[str, str], Awaitable[str]] | None = None,
    ):
        self.models = models or []
        self.list_error: Exception | None = None
        self.handler = handler
        self.list_calls = 0
        self.generate_calls: list[dict] = []
        self.closed = False

    async def list_models(self) -> list[ModelDescriptor]:
        self.list_calls += 1
        if self.list_error is not None:
            raise self.list_error
        return list(self.models)

    async def generate(self, prompt, model, temperature=0.7, max_tokens=None, system=None):
        self.generate_calls.append(
            {"prompt": prompt, "model": model, "system": system, "max_tokens": max_tokens}
        )
        text = await self.handler(prompt, model) if self.handler else "ok"
        return text, ChatUsage(input_tokens=len(prompt.split()), output_tokens=len(text.split()))

    async def close(self) -> None:
        self.closed = True


class ScriptedStage(BaseStage):
    """Stage whose execute() pops outcomes from a script (result dict or exception)."""

    def __init__(self, name: StageName, script: list | None = None):
        self.name = name
        self.script = list(script or [])
        self.calls = 0

    async def execute(self, context: StageContext) -> dict:
        self.calls += 1
        outcome = self.script.pop(0) if self.script else {"stage": self.name.value}
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def descriptor(name: str, operations: list[str] | None = None) -> ModelDescriptor:
    return ModelDescriptor(
        name=name,
        supported_operations=operations if operations is not None else ["generateContent"],
    )


def quota_error(message: str = "Quota exceeded for quota metric 'generate_requests_per_day'", **kwargs):
    return AIClientResponseError(
        message,
        kind=ErrorKind.QUOTA_EXHAUSTED,
        provider="fake",
        status_code=429,
        **kwargs,
    )


def overload_error(message: str = "The model is overloaded"):
    return AIClientResponseError(message, kind=ErrorKind.TRANSIENT, provider="fake", status_code=503)


def missing_model_error(model: str = "gemini-x"):
    return AIClientResponseError(
        f"models/{model} is not found",
        kind=ErrorKind.MODEL_UNAVAILABLE,
        provider="fake",
        status_code=404,
    )


PROFILES = {
    "summary_brief": TaskProfile(
        task_type="summary_brief",
        primary="gemini-2.5-flash",
        fallbacks=["gemini-2.5-flash", "gemini-2.5-flash-lite", "gemini-2.5-pro"],
    ),
    "qa_simple": TaskProfile(
        task_type="qa_simple",
        primary="gemini-2.5-flash-lite",
        fallbacks=["gemini-2.5-flash"],
    ),
}


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fake_client() -> FakeAIClient:
    return FakeAIClient(
        models=[
            descriptor("gemini-2.5-flash"),
            descriptor("gemini-2.5-flash-lite"),
            descriptor("gemini-2.5-pro"),
            descriptor("text-embedding-004", ["embedContent"]),
        ]
    )


@pytest.fixture
def catalog(fake_client) -> ModelCatalog:
    return ModelCatalog(fake_client, dict(PROFILES), ModelCache(ttl=3600, clock=MonotonicClock()))


@pytest.fixture
def store(clock) -> InMemoryContentStore:
    return InMemoryContentStore(clock=clock)


def scripted_registry(**scripts) -> tuple[StageRegistry, dict[StageName, ScriptedStage]]:
    """Registry with a ScriptedStage per stage; kwargs map stage value -> script."""
    registry = StageRegistry()
    stages = {}
    for name in StageName:
        stage = ScriptedStage(name, scripts.get(name.value))
        registry.register(stage)
        stages[name] = stage
    return registry, stages


@pytest.fixture
def make_pipeline(store, clock):
    def factory(**scripts) -> tuple[ContentPipeline, dict[StageName, ScriptedStage]]:
        registry, stages = scripted_registry(**scripts)
        return ContentPipeline(store, registry, clock=clock), stages

    return factory


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at the built-in config with an empty external prompts dir."""
    return Settings(
        _env_file=None,
        gemini_api_key="test-key",
        prompts_dir=tmp_path / "prompts",
    )
