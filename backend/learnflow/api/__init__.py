"""API routes for the learning-content pipeline."""

from learnflow.api import content_routes, models_routes, quota_routes, scheduler_routes

__all__ = ["content_routes", "models_routes", "quota_routes", "scheduler_routes"]
