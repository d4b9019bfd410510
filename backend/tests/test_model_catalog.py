"""Tests for model discovery, caching and per-task selection."""

import pytest

from learnflow.exceptions import NoModelsAvailableError, UnknownTaskTypeError
from learnflow.models.schemas import AITaskType
from learnflow.services.ai_clients.base import AIClientConnectionError
from learnflow.services.model_catalog import ModelCache, ModelCatalog

from tests.conftest import PROFILES, FakeAIClient, MonotonicClock, descriptor, missing_model_error


class TestModelCache:
    """Tests for the TTL cache."""

    def test_fresh_within_ttl(self):
        clock = MonotonicClock(0)
        cache = ModelCache(ttl=60, clock=clock)
        cache.put([descriptor("a")])

        clock.value = 59
        assert [m.name for m in cache.get_fresh()] == ["a"]

        clock.value = 60
        assert cache.get_fresh() is None
        assert [m.name for m in cache.get_any()] == ["a"]

    def test_clear(self):
        cache = ModelCache(ttl=60)
        cache.put([descriptor("a")])
        cache.clear()
        assert cache.get_any() is None


class TestListAvailable:
    """Tests for ModelCatalog.list_available."""

    async def test_filters_by_operation(self, catalog):
        models = await catalog.list_available()
        names = [m.name for m in models]

        assert "text-embedding-004" not in names
        assert names == ["gemini-2.5-flash", "gemini-2.5-flash-lite", "gemini-2.5-pro"]

    async def test_cache_hit_does_not_call_provider(self, catalog, fake_client):
        await catalog.list_available()
        await catalog.list_available()
        await catalog.list_available()

        assert fake_client.list_calls == 1

    async def test_expired_cache_refetches(self, fake_client):
        clock = MonotonicClock(0)
        catalog = ModelCatalog(fake_client, PROFILES, ModelCache(ttl=3600, clock=clock))

        await catalog.list_available()
        clock.value = 3601
        await catalog.list_available()

        assert fake_client.list_calls == 2

    async def test_force_refresh(self, catalog, fake_client):
        await catalog.list_available()
        await catalog.list_available(force_refresh=True)

        assert fake_client.list_calls == 2

    async def test_checks_candidates_when_listing_fails(self):
        async def handler(prompt, model):
            if model == "gemini-2.5-pro":
                raise missing_model_error(model)
            return "hi"

        client = FakeAIClient(handler=handler)
        client.list_error = AIClientConnectionError("connection refused")
        catalog = ModelCatalog(
            client,
            PROFILES,
            ModelCache(ttl=3600),
            candidates=[descriptor("gemini-2.5-flash"), descriptor("gemini-2.5-pro")],
        )

        models = await catalog.list_available()

        assert [m.name for m in models] == ["gemini-2.5-flash"]
        assert all(call["max_tokens"] == 1 for call in client.generate_calls)

    async def test_stale_cache_when_discovery_yields_nothing(self, fake_client):
        clock = MonotonicClock(0)
        catalog = ModelCatalog(fake_client, PROFILES, ModelCache(ttl=10, clock=clock))
        first = await catalog.list_available()

        clock.value = 100
        fake_client.list_error = AIClientConnectionError("down")
        models = await catalog.list_available()

        assert models == first

    async def test_no_models_and_no_cache(self):
        client = FakeAIClient()
        client.list_error = AIClientConnectionError("down")
        catalog = ModelCatalog(client, PROFILES, ModelCache(ttl=10))

        with pytest.raises(NoModelsAvailableError):
            await catalog.list_available()


class TestSelection:
    """Tests for task profiles and model selection."""

    def test_fallback_chain_is_deduplicated(self, catalog):
        chain = catalog.get_fallback_chain("summary_brief")
        assert chain == ["gemini-2.5-flash", "gemini-2.5-flash-lite", "gemini-2.5-pro"]

    def test_accepts_enum(self, catalog):
        assert catalog.get_profile(AITaskType.QA_SIMPLE).primary == "gemini-2.5-flash-lite"

    def test_unknown_task_type(self, catalog):
        with pytest.raises(UnknownTaskTypeError) as exc_info:
            catalog.get_fallback_chain("poetry")
        assert exc_info.value.task_type == "poetry"

    async def test_select_primary(self, catalog):
        model = await catalog.select_model("summary_brief")
        assert model.name == "gemini-2.5-flash"

    async def test_select_fallback(self):
        client = FakeAIClient(models=[descriptor("gemini-2.5-pro"), descriptor("gemini-2.5-flash-lite")])
        catalog = ModelCatalog(client, PROFILES, ModelCache(ttl=10))

        model = await catalog.select_model("summary_brief")
        assert model.name == "gemini-2.5-flash-lite"

    async def test_select_any_available(self):
        client = FakeAIClient(models=[descriptor("gemma-3")])
        catalog = ModelCatalog(client, PROFILES, ModelCache(ttl=10))

        model = await catalog.select_model("summary_brief")
        assert model.name == "gemma-3"
