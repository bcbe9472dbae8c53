from fastapi import APIRouter

from app.api.v1.routers import (
    application_documents,
    application_verifications,
    applications,
    health,
)

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(applications.router)
api_router.include_router(application_documents.router)
api_router.include_router(application_verifications.router)

__all__ = ["api_router"]
