"""API routes for the member lifecycle engine."""

from fastapi import APIRouter

from .webhooks import router as webhooks_router

# Main API router
api_router = APIRouter()

# Payment processor webhooks
api_router.include_router(webhooks_router)

__all__ = ["api_router"]
