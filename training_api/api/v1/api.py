"""API router for version 1."""
from fastapi import APIRouter

from training_api.api.v1.endpoints import notifications, push_subscriptions


api_router = APIRouter()
api_router.include_router(notifications.router)
api_router.include_router(push_subscriptions.router)
