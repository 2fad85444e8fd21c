from fastapi import APIRouter

from image_governance.api.routes import governance, health, metrics, monitoring

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(metrics.router, tags=["observability"])
api_router.include_router(monitoring.router, prefix="/monitoring", tags=["observability"])
api_router.include_router(governance.router, prefix="/governance", tags=["governance"])
