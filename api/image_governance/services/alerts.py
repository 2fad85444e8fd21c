from __future__ import annotations

import logging
from dataclasses import dataclass

from image_governance.core.urls import RewriteReason
from image_governance.schemas.governance import PreviewSummary
from image_governance.services.notifications import AlertDispatchError, NotificationSink
from image_governance.services.store import DocumentStore, RepositoryError

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"
ALERT_TITLE = "Image URL governance anomaly"
ANOMALY_TYPE = "image_url_governance_invalid"


@dataclass(slots=True, frozen=True)
class AlertThresholds:
    invalid_count: int = 50
    invalid_ratio: float = 0.05


@dataclass(slots=True, frozen=True)
class AlertEvaluation:
    invalid_count: int
    invalid_ratio: float
    triggered: bool
    severity: str
    priority: str


def evaluate_invalid_alert(summary: PreviewSummary, thresholds: AlertThresholds) -> AlertEvaluation:
    invalid_count = summary.by_reason.get(RewriteReason.INVALID.value, 0)
    invalid_ratio = invalid_count / max(summary.total_candidates, 1)
    triggered = invalid_count >= thresholds.invalid_count or invalid_ratio >= thresholds.invalid_ratio

    if invalid_ratio >= 0.2:
        severity = "high"
    elif invalid_ratio >= 0.1:
        severity = "medium"
    else:
        severity = "low"
    priority = "urgent" if severity == "high" else "high"
    return AlertEvaluation(
        invalid_count=invalid_count,
        invalid_ratio=invalid_ratio,
        triggered=triggered,
        severity=severity,
        priority=priority,
    )


class AdminRecipientResolver:
    def __init__(self, store: DocumentStore, collection: str = "users") -> None:
        self.store = store
        self.collection = collection

    async def resolve(self) -> str | None:
        admins = await self.store.find(
            self.collection,
            filter={"role": ADMIN_ROLE},
            projection={"_id": 1},
            limit=1,
        )
        if not admins:
            return None
        return str(admins[0].get("_id"))


class InvalidUrlAlerter:
    def __init__(
        self,
        sink: NotificationSink,
        recipients: AdminRecipientResolver,
        thresholds: AlertThresholds | None = None,
    ) -> None:
        self.sink = sink
        self.recipients = recipients
        self.thresholds = thresholds or AlertThresholds()

    async def maybe_alert(self, summary: PreviewSummary, *, report_file: str | None) -> bool:
        """Notify an administrator when invalid URLs cross a threshold.

        Returns whether a notification was handed to the sink. Missing
        recipients and delivery failures are logged, never raised.
        """
        evaluation = evaluate_invalid_alert(summary, self.thresholds)
        if not evaluation.triggered:
            return False

        try:
            recipient_id = await self.recipients.resolve()
        except RepositoryError:
            logger.exception("failed to resolve admin recipient for governance alert")
            return False
        if recipient_id is None:
            logger.warning("no admin user found; governance alert skipped")
            return False

        message = (
            f"Governance run found {evaluation.invalid_count} invalid image URLs "
            f"({evaluation.invalid_ratio * 100:.2f}% of candidates). Check the data sources and URL parsing."
        )
        try:
            await self.sink.notify(
                recipient_role=ADMIN_ROLE,
                title=ALERT_TITLE,
                message=message,
                severity=evaluation.severity,
                metadata={
                    "recipient_id": recipient_id,
                    "anomaly_type": ANOMALY_TYPE,
                    "priority": evaluation.priority,
                    "by_reason": dict(summary.by_reason),
                    "by_entity_kind": dict(summary.by_entity_kind),
                    "report_file": report_file,
                },
            )
        except AlertDispatchError:
            logger.exception("failed to dispatch governance alert")
            return False

        logger.warning(
            "governance alert dispatched invalid_count=%s invalid_ratio=%.4f",
            evaluation.invalid_count,
            evaluation.invalid_ratio,
        )
        return True
