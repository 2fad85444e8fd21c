from fastapi import APIRouter, Depends, Response
from prometheus_client import CONTENT_TYPE_LATEST

from image_governance.api.routes.governance import governance_service
from image_governance.services.governance import GovernanceService

router = APIRouter()


@router.get("/metrics")
async def metrics(service: GovernanceService = Depends(governance_service)) -> Response:
    return Response(content=service.metrics.render(), media_type=CONTENT_TYPE_LATEST)
