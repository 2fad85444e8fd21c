from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, timezone
from pathlib import Path

from opentelemetry import trace

from image_governance.core.config import Settings, get_settings
from image_governance.core.telemetry import configure_logging, setup_telemetry, shutdown_telemetry
from image_governance.services.governance import get_governance_service
from image_governance.services.reports import ReportWriter
from image_governance.services.scanner import CandidateScanner

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def scheduler_enabled(settings: Settings) -> bool:
    return settings.governance_available and settings.scheduler_interval_seconds > 0


class GovernanceScheduler:
    """Writes one preview snapshot per day for the analytics dashboard.

    Ticks only scan; executions stay a manual, reviewed step.
    """

    def __init__(
        self,
        scanner: CandidateScanner,
        reports: ReportWriter,
        *,
        interval_seconds: float,
        limit_per_entity_kind: int,
    ) -> None:
        self.scanner = scanner
        self.reports = reports
        self.interval_seconds = interval_seconds
        self.limit_per_entity_kind = limit_per_entity_kind
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self, *, today: date | None = None) -> Path | None:
        day = today or datetime.now(timezone.utc).date()
        with tracer.start_as_current_span("governance.scheduler_tick") as span:
            span.set_attribute("governance.snapshot_day", day.isoformat())
            try:
                result = await self.scanner.scan(self.limit_per_entity_kind)
                path = await asyncio.to_thread(self.reports.write_daily_preview, result, day)
            except Exception:  # pragma: no cover - scheduler robustness
                logger.exception("daily governance preview failed for %s", day.isoformat())
                return None
        return path

    async def run_forever(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            await self.run_once()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self.run_forever(), name="governance-scheduler")
        logger.info("governance scheduler started interval_seconds=%s", self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("governance scheduler stopped")


async def run_scheduler() -> None:
    settings = get_settings()
    configure_logging()
    telemetry_runtime = setup_telemetry(settings)
    try:
        if not scheduler_enabled(settings):
            logger.info("governance scheduler disabled for storage backend=%s", settings.storage_backend)
            return
        service = get_governance_service()
        scheduler = GovernanceScheduler(
            service.scanner,
            service.reports,
            interval_seconds=settings.scheduler_interval_seconds,
            limit_per_entity_kind=settings.scheduler_limit_per_entity_kind,
        )
        try:
            await scheduler.run_forever()
        finally:
            await service.close()
    finally:
        shutdown_telemetry(telemetry_runtime)


if __name__ == "__main__":
    asyncio.run(run_scheduler())
