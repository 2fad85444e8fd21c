from fastapi import APIRouter, Depends, Request

from image_governance.core.config import Settings, get_settings

router = APIRouter()


@router.get("/")
async def root() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(request: Request, settings: Settings = Depends(get_settings)) -> dict[str, object]:
    scheduler = getattr(request.app.state, "governance_scheduler", None)
    return {
        "status": "ok",
        "storage_backend": settings.storage_backend,
        "governance_available": settings.governance_available,
        "scheduler_running": bool(scheduler is not None and scheduler.running),
    }
