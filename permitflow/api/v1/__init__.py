from fastapi import APIRouter

from permitflow.api.v1.routers import applications, downloads, health, rejections, signing

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(applications.router)
api_router.include_router(signing.router)
api_router.include_router(rejections.router)
api_router.include_router(downloads.router)

__all__ = ["api_router"]
