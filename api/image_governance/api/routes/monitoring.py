import logging
import time
from typing import Any

from fastapi import APIRouter, Depends

from image_governance.api.routes.governance import governance_service
from image_governance.core.urls import RewriteReason
from image_governance.schemas.monitoring import RewriteEvent, RewriteEventAck, RewriteEventIn
from image_governance.services.governance import GovernanceService
from image_governance.services.scanner import DEFAULT_DESCRIPTORS

logger = logging.getLogger(__name__)

METRICS_ORIGIN = "frontend"
UNKNOWN_LABEL = "unknown"
KNOWN_REASONS = {reason.value for reason in RewriteReason}
KNOWN_ENTITY_KINDS = {descriptor.entity_kind for descriptor in DEFAULT_DESCRIPTORS}

router = APIRouter()


@router.post("/image-url-rewrite", response_model=RewriteEventAck)
async def log_image_url_rewrite(
    payload: RewriteEventIn,
    service: GovernanceService = Depends(governance_service),
) -> RewriteEventAck:
    event = sanitize_rewrite_event(payload)
    logger.info(
        "image url rewrite reported reason=%s entity_kind=%s original=%s resolved=%s "
        "frontend_origin=%s backend_origin=%s timestamp=%s",
        event.reason,
        event.entity_kind,
        event.original,
        event.resolved,
        event.frontend_origin,
        event.backend_origin,
        event.timestamp,
    )
    # Only known names become label values.
    reason = event.reason if event.reason in KNOWN_REASONS else UNKNOWN_LABEL
    entity_kind = event.entity_kind if event.entity_kind in KNOWN_ENTITY_KINDS else UNKNOWN_LABEL
    service.metrics.record_rewrite(METRICS_ORIGIN, reason, entity_kind)
    return RewriteEventAck()


def sanitize_rewrite_event(payload: RewriteEventIn) -> RewriteEvent:
    timestamp = payload.timestamp
    if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
        timestamp = time.time() * 1000
    return RewriteEvent(
        original=_text(payload.original, "invalid"),
        resolved=_text(payload.resolved, "invalid"),
        reason=_text(payload.reason, UNKNOWN_LABEL),
        entity_kind=_text(payload.entity_kind, UNKNOWN_LABEL),
        frontend_origin=_text(payload.frontend_origin, UNKNOWN_LABEL),
        backend_origin=_text(payload.backend_origin, UNKNOWN_LABEL),
        timestamp=int(timestamp),
    )


def _text(value: Any, fallback: str) -> str:
    return value if isinstance(value, str) else fallback
