"""
Service container shared by the API routes.

The application builds one container in its lifespan and stores it on
app.state; routes receive it through the get_container dependency.
"""

from dataclasses import dataclass

from fastapi import HTTPException, Request

from learnflow.config import Settings
from learnflow.services.ai_clients import BaseAIClientImpl
from learnflow.services.ai_executor import AIExecutor
from learnflow.services.content_store import ContentStore
from learnflow.services.model_catalog import ModelCatalog
from learnflow.services.pipeline import ContentPipeline
from learnflow.services.recovery import RecoveryScheduler
from learnflow.services.request_log import QuotaUsageService


@dataclass
class AppContainer:
    """Long-lived services wired together at startup."""

    settings: Settings
    client: BaseAIClientImpl
    catalog: ModelCatalog
    executor: AIExecutor
    store: ContentStore
    pipeline: ContentPipeline
    recovery: RecoveryScheduler
    usage: QuotaUsageService


def get_container(request: Request) -> AppContainer:
    """FastAPI dependency returning the application container."""
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(status_code=503, detail="Services not initialized")
    return container
