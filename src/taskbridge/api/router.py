"""Main API router that aggregates all route modules."""

from fastapi import APIRouter

from taskbridge.api import events, health, webhooks, workflows

api_router = APIRouter()

api_router.include_router(health.router, prefix="/health", tags=["health"])
api_router.include_router(webhooks.router, prefix="/webhooks/clickup", tags=["webhooks"])
api_router.include_router(workflows.router, prefix="/workflows", tags=["workflows"])
api_router.include_router(events.router, prefix="/events", tags=["events"])
