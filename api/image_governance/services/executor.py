from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

from opentelemetry import trace

from image_governance.schemas.governance import (
    ExecutionOutcome,
    ExecutionResult,
    FailureRecord,
    PreviewResult,
    PreviewSummary,
)
from image_governance.services.alerts import InvalidUrlAlerter
from image_governance.services.jobs import PreviewJobStore
from image_governance.services.metrics import GovernanceMetrics
from image_governance.services.reports import ReportWriter
from image_governance.services.scanner import CandidateScanner, epoch_ms
from image_governance.services.store import (
    DocumentStore,
    FieldUpdate,
    RepositoryError,
    RepositoryValidationError,
)
from image_governance.services.strategies import ExecutionBuildError, UpdateStrategy, build_strategy_registry

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

METRICS_ORIGIN = "backend"
DEFAULT_RESCAN_LIMIT = 5000


class PreviewJobNotFoundError(Exception):
    """Raised when a preview job id is unknown or has expired."""


class MigrationExecutor:
    """Applies previewed URL rewrites as grouped bulk updates.

    Each entity kind runs as one unordered batch, one kind after the other.
    Side effects after the writes (report file, metrics, admin alert) never
    fail the call; their outcome is reported on the result instead.
    """

    def __init__(
        self,
        store: DocumentStore,
        jobs: PreviewJobStore,
        scanner: CandidateScanner,
        *,
        metrics: GovernanceMetrics,
        reports: ReportWriter,
        alerter: InvalidUrlAlerter,
        strategies: dict[str, UpdateStrategy] | None = None,
        rescan_limit: int = DEFAULT_RESCAN_LIMIT,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.jobs = jobs
        self.scanner = scanner
        self.metrics = metrics
        self.reports = reports
        self.alerter = alerter
        self.strategies = strategies if strategies is not None else build_strategy_registry(scanner.descriptors)
        self.rescan_limit = rescan_limit
        self._clock = clock

    async def execute(self, job_id: str, *, strict: bool = False) -> ExecutionOutcome:
        if strict:
            result = await self.execute_job(job_id)
            return ExecutionOutcome(kind="executed", requested_job_id=job_id, job_id=job_id, result=result)
        return await self.execute_or_rescan(job_id, rescan_limit=self.rescan_limit)

    async def execute_or_rescan(self, job_id: str, *, rescan_limit: int) -> ExecutionOutcome:
        preview = self.jobs.get(job_id)
        if preview is not None:
            result = await self.execute_preview(job_id, preview)
            return ExecutionOutcome(kind="executed", requested_job_id=job_id, job_id=job_id, result=result)

        # The rescan may write more (or different) documents than the caller previewed.
        logger.warning(
            "preview job %s not found or expired; rescanning with limit=%s before executing",
            job_id,
            rescan_limit,
        )
        rescanned = await self.scanner.scan(rescan_limit)
        new_job_id = self.jobs.put(rescanned)
        preview = self.jobs.get(new_job_id) or rescanned
        result = await self.execute_preview(new_job_id, preview)
        return ExecutionOutcome(kind="rescanned", requested_job_id=job_id, job_id=new_job_id, result=result)

    async def execute_job(self, job_id: str) -> ExecutionResult:
        preview = self.jobs.get(job_id)
        if preview is None:
            raise PreviewJobNotFoundError(f"preview job not found or expired: {job_id}")
        return await self.execute_preview(job_id, preview)

    async def execute_preview(self, job_id: str, preview: PreviewResult) -> ExecutionResult:
        started_at = epoch_ms(self._clock)
        summary = PreviewSummary()
        failures: list[FailureRecord] = []
        updates_by_kind: dict[str, list[FieldUpdate]] = {}

        with tracer.start_as_current_span("governance.execute") as span:
            span.set_attribute("governance.job_id", job_id)
            for change in preview.sample_changes:
                reason = change.reason_code.value
                summary.total_candidates += 1
                summary.by_entity_kind[change.entity_kind] = summary.by_entity_kind.get(change.entity_kind, 0) + 1
                summary.by_reason[reason] = summary.by_reason.get(reason, 0) + 1
                self.metrics.record_rewrite(METRICS_ORIGIN, reason, change.entity_kind)

                strategy = self.strategies.get(change.entity_kind)
                try:
                    if strategy is None:
                        raise ExecutionBuildError(f"no update strategy for entity kind {change.entity_kind!r}")
                    update = strategy.build(change, self.store)
                except (ExecutionBuildError, RepositoryValidationError) as exc:
                    failures.append(
                        FailureRecord(
                            entity_kind=change.entity_kind,
                            document_id=change.document_id,
                            field_path=change.field_path,
                            error_message=str(exc),
                        )
                    )
                    continue
                updates_by_kind.setdefault(change.entity_kind, []).append(update)

            updated_count = 0
            durations_ms: dict[str, float] = {}
            for entity_kind, strategy in self.strategies.items():
                updates = updates_by_kind.get(entity_kind)
                if not updates:
                    continue
                batch_started = time.perf_counter()
                try:
                    written = await self.store.bulk_update(strategy.collection, updates)
                except RepositoryError:
                    logger.exception("bulk update failed for entity kind=%s", entity_kind)
                    written = None
                durations_ms[entity_kind] = round((time.perf_counter() - batch_started) * 1000.0, 3)
                if written is None:
                    continue
                updated_count += written.modified_count
                if written.write_errors:
                    logger.warning(
                        "entity kind=%s reported %s write errors", entity_kind, len(written.write_errors)
                    )
            span.set_attribute("governance.updated_count", updated_count)
            span.set_attribute("governance.failed_count", len(failures))

        finished_at = epoch_ms(self._clock)
        report_path = self.reports.execution_report_path()
        result = ExecutionResult(
            job_id=job_id,
            started_at=started_at,
            finished_at=finished_at,
            duration_ms=finished_at - started_at,
            summary=summary,
            sample_changes=preview.sample_changes,
            skipped_entity_kinds=preview.skipped_entity_kinds,
            updated_count=updated_count,
            failed_count=len(failures),
            failures=failures,
            report_file=str(report_path),
            model_durations_ms=durations_ms,
        )
        result.report_persisted = await asyncio.to_thread(
            self.reports.write_execution_report, result, report_path
        )

        # TODO: feed the remaining gauge from a count of unprocessed candidates; it is pinned to 0 today.
        self.metrics.record_progress(
            summary.by_entity_kind,
            {entity_kind: 0 for entity_kind in self.strategies},
        )
        result.remaining_computed = False

        result.alert_dispatched = await self.alerter.maybe_alert(summary, report_file=result.report_file)
        logger.info(
            "governance execution finished job_id=%s candidates=%s updated=%s failed=%s",
            job_id,
            summary.total_candidates,
            updated_count,
            len(failures),
        )
        return result
