from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from image_governance.core.config import Settings, get_settings
from image_governance.services.alerts import AdminRecipientResolver, AlertThresholds, InvalidUrlAlerter
from image_governance.services.analytics import DailyAnalyticsReader
from image_governance.services.executor import MigrationExecutor
from image_governance.services.jobs import PreviewJobStore
from image_governance.services.metrics import GovernanceMetrics
from image_governance.services.notifications import HttpNotificationSink, LoggingNotificationSink, NotificationSink
from image_governance.services.reports import ReportWriter
from image_governance.services.repository import get_document_store
from image_governance.services.scanner import CandidateScanner
from image_governance.services.store import DocumentStore, RepositoryUnavailableError


@dataclass(slots=True)
class GovernanceService:
    settings: Settings
    store: DocumentStore
    jobs: PreviewJobStore
    scanner: CandidateScanner
    executor: MigrationExecutor
    metrics: GovernanceMetrics
    reports: ReportWriter
    analytics: DailyAnalyticsReader

    async def close(self) -> None:
        await self.store.close()


def build_governance_service(
    settings: Settings,
    store: DocumentStore,
    *,
    sink: NotificationSink | None = None,
    metrics: GovernanceMetrics | None = None,
) -> GovernanceService:
    metrics = metrics or GovernanceMetrics()
    reports = ReportWriter(settings.report_dir)
    jobs = PreviewJobStore(ttl_seconds=settings.preview_ttl_seconds)
    scanner = CandidateScanner(store, canonical_origin=settings.canonical_origin)
    alerter = InvalidUrlAlerter(
        sink or _build_sink(settings),
        AdminRecipientResolver(store),
        AlertThresholds(invalid_count=settings.invalid_alert_count, invalid_ratio=settings.invalid_alert_pct),
    )
    executor = MigrationExecutor(
        store,
        jobs,
        scanner,
        metrics=metrics,
        reports=reports,
        alerter=alerter,
        rescan_limit=settings.execute_rescan_limit,
    )
    return GovernanceService(
        settings=settings,
        store=store,
        jobs=jobs,
        scanner=scanner,
        executor=executor,
        metrics=metrics,
        reports=reports,
        analytics=DailyAnalyticsReader(settings.report_dir, metrics),
    )


def _build_sink(settings: Settings) -> NotificationSink:
    if settings.notification_base_url:
        return HttpNotificationSink(
            settings.notification_base_url,
            settings.notification_api_key,
            timeout_seconds=settings.notification_timeout_seconds,
        )
    return LoggingNotificationSink()


@lru_cache
def get_governance_service() -> GovernanceService:
    settings = get_settings()
    if not settings.governance_available:
        raise RepositoryUnavailableError(
            f"image governance is disabled for storage backend {settings.storage_backend!r}"
        )
    return build_governance_service(settings, get_document_store())
