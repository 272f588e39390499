"""API route registration."""

from fastapi import APIRouter
from .tests import router as tests_router
from .ratings import router as ratings_router


def register_all_routes(api_router: APIRouter):
    """Include all route modules on the main API router."""
    api_router.include_router(tests_router)
    api_router.include_router(ratings_router)
