from fastapi import APIRouter

from app.api.v1.routers import (
    applications,
    health,
    leads,
    session,
)

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(session.router)
api_router.include_router(leads.router)
api_router.include_router(applications.router)

__all__ = ["api_router"]
