"""
FastAPI application for the learning-content pipeline.

Provides HTTP API for content processing, quota recovery and model
discovery. The recovery scheduler runs inside the application lifespan.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from learnflow.api import content_routes, models_routes, quota_routes, scheduler_routes
from learnflow.api.dependencies import AppContainer
from learnflow.config import Settings, get_settings, load_known_models, load_task_profiles
from learnflow.logging_config import setup_logging
from learnflow.services.ai_clients import create_client
from learnflow.services.ai_executor import AIExecutor, RetryPolicy
from learnflow.services.content_store import InMemoryContentStore
from learnflow.services.model_catalog import ModelCache, ModelCatalog
from learnflow.services.pipeline import ContentPipeline
from learnflow.services.recovery import RecoveryScheduler
from learnflow.services.request_log import InMemoryRequestLogStore, QuotaUsageService
from learnflow.services.scheduler import AsyncioScheduler
from learnflow.services.stages import InMemoryVectorIndex, create_default_stages

# Configure logging before anything else
settings = get_settings()
setup_logging(settings)
logger = logging.getLogger(__name__)


def build_container(settings: Settings) -> AppContainer:
    """
    Wire all long-lived services from settings.

    Args:
        settings: Application settings

    Returns:
        AppContainer with every service constructed
    """
    client = create_client(settings)
    catalog = ModelCatalog(
        client,
        load_task_profiles(settings),
        ModelCache(settings.model_cache_ttl),
        candidates=load_known_models(settings),
        required_operation=settings.required_operation,
    )
    usage = QuotaUsageService.from_settings(
        settings, InMemoryRequestLogStore(max_entries=settings.request_log_max_entries)
    )
    executor = AIExecutor(catalog, RetryPolicy.from_settings(settings), request_log=usage)
    store = InMemoryContentStore()
    vector_index = InMemoryVectorIndex()
    registry = create_default_stages(client, executor, settings, vector_index=vector_index)
    pipeline = ContentPipeline(store, registry, reset_timezone=settings.quota_reset_timezone)
    recovery = RecoveryScheduler.from_settings(
        settings,
        store,
        pipeline,
        AsyncioScheduler(),
        vector_index=vector_index,
    )

    return AppContainer(
        settings=settings,
        client=client,
        catalog=catalog,
        executor=executor,
        store=store,
        pipeline=pipeline,
        recovery=recovery,
        usage=usage,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Builds the service container and starts/stops the recovery scheduler.
    """
    logger.info("Starting LearnFlow API")
    logger.info(f"Log level: {settings.log_level}")
    logger.info(f"AI provider: {settings.ai_provider}")

    container = build_container(settings)
    app.state.container = container

    if settings.scheduler_enabled:
        container.recovery.start()
    else:
        logger.info("Recovery scheduler disabled")

    yield

    logger.info("Shutting down LearnFlow API")
    await container.recovery.stop()
    await container.client.close()


app = FastAPI(
    title="LearnFlow API",
    description="API for AI-generated learning content with quota-aware recovery",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(content_routes.router)
app.include_router(quota_routes.router)
app.include_router(models_routes.router)
app.include_router(scheduler_routes.router)


@app.get("/health")
async def health_check() -> dict:
    """
    Health check endpoint.

    Returns:
        Basic health status
    """
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "learnflow.main:app",
        host="0.0.0.0",
        port=8801,
        reload=True,
    )
