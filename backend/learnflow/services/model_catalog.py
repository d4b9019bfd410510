"""
Model discovery and per-task model selection.

The catalog asks the provider which models exist, keeps the ones that
support the required operation, and caches the answer for a TTL. Task
types map to a primary model plus ordered fallbacks (TaskProfile,
loaded from config/models.yaml).

Concurrent cache misses are not de-duplicated: two callers that miss at
the same time both call the provider, and the last one to finish wins.

Example:
    catalog = ModelCatalog(client, profiles, ModelCache(ttl=3600))
    model = await catalog.select_model("summary_brief")
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable

from learnflow.exceptions import NoModelsAvailableError, UnknownTaskTypeError
from learnflow.models.schemas import ModelDescriptor, TaskProfile
from learnflow.services.ai_clients.base import AIClientError, BaseAIClient

logger = logging.getLogger(__name__)

PING_PROMPT = "hi"


@dataclass
class ModelCacheEntry:
    """Cached discovery result.

    Attributes:
        models: Models that passed the operation filter
        cached_at: Clock reading when the entry was stored
    """

    models: list[ModelDescriptor]
    cached_at: float


class ModelCache:
    """
    Process-local TTL cache for the discovered model list.

    The clock is injectable so tests can move time without sleeping.
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.clock = clock
        self.entry: ModelCacheEntry | None = None

    def get_fresh(self) -> list[ModelDescriptor] | None:
        """Return cached models if the entry is younger than the TTL."""
        if self.entry is None:
            return None
        if self.clock() - self.entry.cached_at < self.ttl:
            return self.entry.models
        return None

    def get_any(self) -> list[ModelDescriptor] | None:
        """Return cached models regardless of age."""
        return self.entry.models if self.entry else None

    def put(self, models: list[ModelDescriptor]) -> None:
        """Replace the cache entry."""
        self.entry = ModelCacheEntry(models=list(models), cached_at=self.clock())

    def clear(self) -> None:
        """Drop the cache entry."""
        self.entry = None


class ModelCatalog:
    """
    Discovers available models and picks one per task type.

    Attributes:
        client: Provider client used for discovery and candidate checks
        profiles: Task type -> TaskProfile
        cache: Injected model cache
        candidates: Static model list tried when listing fails
        required_operation: Operation a model must support to be usable
    """

    def __init__(
        self,
        client: BaseAIClient,
        profiles: dict[str, TaskProfile],
        cache: ModelCache,
        candidates: list[ModelDescriptor] | None = None,
        required_operation: str = "generateContent",
    ):
        self.client = client
        self.profiles = profiles
        self.cache = cache
        self.candidates = candidates or []
        self.required_operation = required_operation

    async def list_available(self, force_refresh: bool = False) -> list[ModelDescriptor]:
        """
        Return models usable for generation.

        A cache read within TTL never calls the provider. On a miss the
        provider listing is filtered by required operation; if the listing
        call fails, each static candidate is tried with a trivial request.
        If discovery yields nothing, the previous (possibly stale) cache is
        returned.

        Args:
            force_refresh: Bypass the cache

        Returns:
            Non-empty list of available models

        Raises:
            NoModelsAvailableError: Discovery yielded nothing and nothing is cached
        """
        if not force_refresh:
            cached = self.cache.get_fresh()
            if cached is not None:
                logger.debug(f"Returning cached model list ({len(cached)} models)")
                return cached

        logger.info(f"Discovering available models via {self.client.provider}")

        try:
            listed = await self.client.list_models()
            available = [m for m in listed if m.supports(self.required_operation)]
            logger.info(
                f"Found {len(listed)} models, {len(available)} support {self.required_operation}"
            )
        except AIClientError as e:
            logger.warning(f"Model listing failed, checking known models: {e}")
            available = await self._check_candidates()

        if available:
            self.cache.put(available)
            logger.info(f"Model discovery complete: {len(available)} models available")
            return available

        stale = self.cache.get_any()
        if stale:
            logger.warning("Discovery found no models, using cached model list")
            return stale

        raise NoModelsAvailableError(
            "No models are currently available. Check the API key and provider status."
        )

    async def _check_candidates(self) -> list[ModelDescriptor]:
        """Send a trivial generate request to each static candidate."""
        available: list[ModelDescriptor] = []

        for candidate in self.candidates:
            if not candidate.supports(self.required_operation):
                continue
            try:
                await self.client.generate(PING_PROMPT, model=candidate.name, max_tokens=1)
            except AIClientError as e:
                logger.warning(f"Model unavailable: {candidate.name} - {e}")
                continue
            logger.info(f"Model available: {candidate.name}")
            available.append(candidate)

        return available

    def get_profile(self, task_type: str) -> TaskProfile:
        """
        Get the model preference for a task type.

        Raises:
            UnknownTaskTypeError: If no profile is configured
        """
        key = getattr(task_type, "value", task_type)
        if key not in self.profiles:
            raise UnknownTaskTypeError(key, sorted(self.profiles))
        return self.profiles[key]

    def get_fallback_chain(self, task_type: str) -> list[str]:
        """Primary followed by fallbacks, de-duplicated, in declared order."""
        return self.get_profile(task_type).chain

    async def select_model(self, task_type: str, force_refresh: bool = False) -> ModelDescriptor:
        """
        Pick the best available model for a task type.

        Order: primary, then fallbacks in declared order, then the first
        available model of any kind.

        Raises:
            UnknownTaskTypeError: If no profile is configured
            NoModelsAvailableError: If discovery yields nothing
        """
        profile = self.get_profile(task_type)
        available = await self.list_available(force_refresh=force_refresh)
        by_name = {m.name: m for m in available}

        if profile.primary in by_name:
            logger.info(f"Selected primary model for {profile.task_type}: {profile.primary}")
            return by_name[profile.primary]

        for fallback in profile.fallbacks:
            if fallback in by_name:
                logger.info(f"Selected fallback model for {profile.task_type}: {fallback}")
                return by_name[fallback]

        first = available[0]
        logger.warning(f"No preferred models available for {profile.task_type}, using: {first.name}")
        return first
