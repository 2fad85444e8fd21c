import asyncio
import time

from fastapi import APIRouter, Depends, HTTPException, Query, status

from image_governance.core.security import require_admin_key
from image_governance.schemas.governance import (
    AnalyticsRange,
    DailyAnalyticsOut,
    ExecuteRequest,
    ExecutionOutcome,
    PreviewCreatedOut,
    PreviewRequest,
    PreviewResult,
)
from image_governance.services.executor import PreviewJobNotFoundError
from image_governance.services.governance import GovernanceService, get_governance_service
from image_governance.services.store import RepositoryUnavailableError

router = APIRouter(dependencies=[Depends(require_admin_key)])


def governance_service() -> GovernanceService:
    try:
        return get_governance_service()
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc


@router.post("/image-url/preview", response_model=PreviewCreatedOut)
async def preview_image_urls(
    payload: PreviewRequest | None = None,
    service: GovernanceService = Depends(governance_service),
) -> PreviewCreatedOut:
    started_at = time.perf_counter()
    limit = (payload.limit_per_entity_kind if payload else None) or service.settings.preview_default_limit
    result = await service.scanner.scan(limit)
    job_id = service.jobs.put(result)
    service.metrics.record_batch("backend", "preview_batch", "all", (time.perf_counter() - started_at) * 1000.0)
    return PreviewCreatedOut(job_id=job_id, result=result)


@router.get("/image-url/preview/{job_id}", response_model=PreviewResult)
async def get_image_url_preview(
    job_id: str,
    service: GovernanceService = Depends(governance_service),
) -> PreviewResult:
    result = service.jobs.get(job_id)
    if result is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="preview job not found or expired")
    return result


@router.post("/image-url/execute", response_model=ExecutionOutcome)
async def execute_image_url_cleanup(
    payload: ExecuteRequest,
    service: GovernanceService = Depends(governance_service),
) -> ExecutionOutcome:
    started_at = time.perf_counter()
    try:
        outcome = await service.executor.execute(payload.job_id, strict=payload.strict)
    except PreviewJobNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="preview job not found or expired") from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    service.metrics.record_batch("backend", "execute_batch", "all", (time.perf_counter() - started_at) * 1000.0)
    return outcome


@router.get("/reports/daily", response_model=DailyAnalyticsOut)
async def get_daily_analytics(
    range_name: AnalyticsRange = Query(default="week", alias="range"),
    service: GovernanceService = Depends(governance_service),
) -> DailyAnalyticsOut:
    return await asyncio.to_thread(service.analytics.build, range_name)
