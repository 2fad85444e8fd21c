from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI
from starlette.requests import Request

from image_governance.api.router import api_router
from image_governance.core.config import get_settings
from image_governance.core.telemetry import TelemetryRuntime, configure_logging, setup_telemetry, shutdown_telemetry
from image_governance.jobs.scheduler import GovernanceScheduler, scheduler_enabled
from image_governance.services.governance import get_governance_service
from image_governance.services.repository import get_document_store
from image_governance.services.store import RepositoryUnavailableError

settings = get_settings()
_telemetry_runtime: TelemetryRuntime | None = None
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    scheduler: GovernanceScheduler | None = None
    if scheduler_enabled(settings):
        try:
            service = get_governance_service()
        except RepositoryUnavailableError:
            logger.warning("governance scheduler not started: document store unavailable")
        else:
            scheduler = GovernanceScheduler(
                service.scanner,
                service.reports,
                interval_seconds=settings.scheduler_interval_seconds,
                limit_per_entity_kind=settings.scheduler_limit_per_entity_kind,
            )
            scheduler.start()
    else:
        logger.info("governance scheduler skipped for storage backend=%s", settings.storage_backend)
    app.state.governance_scheduler = scheduler

    try:
        yield
    finally:
        if scheduler is not None:
            await scheduler.stop()
        if _telemetry_runtime is not None:
            shutdown_telemetry(_telemetry_runtime, app)
        # Ensure the Mongo client shuts down on app teardown.
        if get_governance_service.cache_info().currsize:
            await get_governance_service().close()
        get_governance_service.cache_clear()
        get_document_store.cache_clear()


configure_logging()
app = FastAPI(title=settings.app_name, lifespan=lifespan)
_telemetry_runtime = setup_telemetry(settings, app)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    started_at = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started_at) * 1000.0
    logger.info(
        "http request method=%s path=%s status=%s duration_ms=%.2f",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
    )
    return response


app.include_router(api_router)
