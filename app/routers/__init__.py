"""API routers for the marketplace payments backend."""
from fastapi import APIRouter

from . import admin_payments, apikeys, health, payments, projects, users


def get_api_router() -> APIRouter:
    """Return the root API router."""

    api_router = APIRouter()
    api_router.include_router(health.router)
    api_router.include_router(users.router)
    api_router.include_router(apikeys.router)
    api_router.include_router(projects.router)
    api_router.include_router(payments.router)
    api_router.include_router(admin_payments.router)
    return api_router
