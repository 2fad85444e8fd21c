from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient
from prometheus_client.parser import text_string_to_metric_families

from image_governance.api.routes.governance import governance_service
from image_governance.core.config import Settings, get_settings
from image_governance.main import app
from image_governance.services.governance import GovernanceService, build_governance_service
from image_governance.services.store import InMemoryDocumentStore

ADMIN_KEY = "test-admin-key"
ORIGIN = "http://localhost:5000"
HEADERS = {"X-API-Key": ADMIN_KEY}


class RecordingSink:
    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []

    async def notify(self, **kwargs: Any) -> None:
        self.calls.append(kwargs)


@pytest.fixture
def governance_client(tmp_path: Path) -> tuple[TestClient, GovernanceService]:
    os.environ["IMG_GOV_ADMIN_API_KEY"] = ADMIN_KEY
    os.environ["IMG_GOV_STORAGE_BACKEND"] = "memory"
    os.environ["IMG_GOV_SCHEDULER_INTERVAL_SECONDS"] = "0"
    get_settings.cache_clear()
    settings = Settings(
        storage_backend="memory",
        base_url=ORIGIN,
        report_dir=str(tmp_path),
        admin_api_key=ADMIN_KEY,
        otel_enabled=False,
    )
    store = InMemoryDocumentStore(
        {
            "records": [{"_id": "r1", "imageUrl": "http://localhost:4000/uploads/analysis/a.png"}],
            "users": [{"_id": "u1", "avatar": "avatars/u1.png", "role": "admin"}],
        }
    )
    service = build_governance_service(settings, store, sink=RecordingSink())
    app.dependency_overrides[governance_service] = lambda: service

    with TestClient(app) as client:
        yield client, service

    app.dependency_overrides.clear()
    os.environ.pop("IMG_GOV_ADMIN_API_KEY", None)
    os.environ.pop("IMG_GOV_STORAGE_BACKEND", None)
    os.environ.pop("IMG_GOV_SCHEDULER_INTERVAL_SECONDS", None)
    get_settings.cache_clear()


def test_preview_then_fetch_and_execute(governance_client: tuple[TestClient, GovernanceService]) -> None:
    client, service = governance_client

    created = client.post("/governance/image-url/preview", json={"limit_per_entity_kind": 10}, headers=HEADERS)
    assert created.status_code == 200
    body = created.json()
    job_id = body["job_id"]
    assert body["result"]["summary"]["total_candidates"] == 2
    assert body["result"]["summary"]["by_entity_kind"] == {"record": 1, "user": 1}

    fetched = client.get(f"/governance/image-url/preview/{job_id}", headers=HEADERS)
    assert fetched.status_code == 200
    assert fetched.json()["summary"] == body["result"]["summary"]

    executed = client.post("/governance/image-url/execute", json={"job_id": job_id}, headers=HEADERS)
    assert executed.status_code == 200
    outcome = executed.json()
    assert outcome["kind"] == "executed"
    assert outcome["job_id"] == job_id
    assert outcome["result"]["updated_count"] == 2
    assert outcome["result"]["report_persisted"] is True
    assert service.store.collections["users"][0]["avatar"] == f"{ORIGIN}/uploads/avatars/u1.png"


def test_preview_without_body_uses_default_limit(governance_client: tuple[TestClient, GovernanceService]) -> None:
    client, _ = governance_client

    response = client.post("/governance/image-url/preview", headers=HEADERS)

    assert response.status_code == 200
    assert response.json()["job_id"].startswith("gov_")


def test_preview_rejects_out_of_range_limit(governance_client: tuple[TestClient, GovernanceService]) -> None:
    client, _ = governance_client

    response = client.post("/governance/image-url/preview", json={"limit_per_entity_kind": 0}, headers=HEADERS)

    assert response.status_code == 422


def test_unknown_preview_job_returns_404(governance_client: tuple[TestClient, GovernanceService]) -> None:
    client, _ = governance_client

    response = client.get("/governance/image-url/preview/gov_missing", headers=HEADERS)

    assert response.status_code == 404
    assert response.json()["detail"] == "preview job not found or expired"


def test_execute_unknown_job_rescans(governance_client: tuple[TestClient, GovernanceService]) -> None:
    client, _ = governance_client

    response = client.post("/governance/image-url/execute", json={"job_id": "gov_missing"}, headers=HEADERS)

    assert response.status_code == 200
    outcome = response.json()
    assert outcome["kind"] == "rescanned"
    assert outcome["requested_job_id"] == "gov_missing"
    assert outcome["job_id"] != "gov_missing"


def test_strict_execute_of_unknown_job_returns_404(governance_client: tuple[TestClient, GovernanceService]) -> None:
    client, service = governance_client

    response = client.post(
        "/governance/image-url/execute", json={"job_id": "gov_missing", "strict": True}, headers=HEADERS
    )

    assert response.status_code == 404
    assert response.json()["detail"] == "preview job not found or expired"
    assert len(service.jobs) == 0
    assert service.store.collections["users"][0]["avatar"] == "avatars/u1.png"


def test_strict_execute_of_live_job(governance_client: tuple[TestClient, GovernanceService]) -> None:
    client, _ = governance_client
    job_id = client.post("/governance/image-url/preview", headers=HEADERS).json()["job_id"]

    response = client.post("/governance/image-url/execute", json={"job_id": job_id, "strict": True}, headers=HEADERS)

    assert response.status_code == 200
    assert response.json()["kind"] == "executed"
    assert response.json()["job_id"] == job_id


def test_execute_requires_non_blank_job_id(governance_client: tuple[TestClient, GovernanceService]) -> None:
    client, _ = governance_client

    response = client.post("/governance/image-url/execute", json={"job_id": "   "}, headers=HEADERS)

    assert response.status_code == 422


def test_daily_report_reads_written_reports(governance_client: tuple[TestClient, GovernanceService]) -> None:
    client, _ = governance_client
    created = client.post("/governance/image-url/preview", headers=HEADERS).json()
    client.post("/governance/image-url/execute", json={"job_id": created["job_id"]}, headers=HEADERS)

    response = client.get("/governance/reports/daily", params={"range": "day"}, headers=HEADERS)

    assert response.status_code == 200
    body = response.json()
    assert body["range"] == "day"
    assert len(body["series"]["progress"]) == 1
    assert body["series"]["progress"][0]["processed_count"] == 2


def test_daily_report_rejects_unknown_range(governance_client: tuple[TestClient, GovernanceService]) -> None:
    client, _ = governance_client

    response = client.get("/governance/reports/daily", params={"range": "year"}, headers=HEADERS)

    assert response.status_code == 422


def test_governance_routes_require_admin_key(governance_client: tuple[TestClient, GovernanceService]) -> None:
    client, _ = governance_client

    missing = client.post("/governance/image-url/preview")
    wrong = client.post("/governance/image-url/preview", headers={"X-API-Key": "nope"})

    assert missing.status_code == 401
    assert wrong.status_code == 401


def test_governance_routes_unavailable_without_configured_key(
    governance_client: tuple[TestClient, GovernanceService],
) -> None:
    client, _ = governance_client
    unconfigured = Settings(storage_backend="memory", admin_api_key=None, otel_enabled=False)
    app.dependency_overrides[get_settings] = lambda: unconfigured

    response = client.post("/governance/image-url/preview", headers=HEADERS)

    assert response.status_code == 503


def test_governance_routes_unavailable_for_postgres_backend(
    governance_client: tuple[TestClient, GovernanceService],
) -> None:
    client, _ = governance_client

    app.dependency_overrides.pop(governance_service)
    os.environ["IMG_GOV_STORAGE_BACKEND"] = "postgres"
    get_settings.cache_clear()
    try:
        response = client.post("/governance/image-url/preview", headers=HEADERS)
    finally:
        os.environ["IMG_GOV_STORAGE_BACKEND"] = "memory"
        get_settings.cache_clear()

    assert response.status_code == 503
    assert "postgres" in response.json()["detail"]


def test_metrics_exposes_rewrite_counter(governance_client: tuple[TestClient, GovernanceService]) -> None:
    client, _ = governance_client
    created = client.post("/governance/image-url/preview", headers=HEADERS).json()
    client.post("/governance/image-url/execute", json={"job_id": created["job_id"]}, headers=HEADERS)

    response = client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    samples = _samples(response.text)
    rewrite_labels = (("entity_kind", "record"), ("origin", "backend"), ("reason", "port_rewrite"))
    assert samples[("image_url_rewrite_total", rewrite_labels)] == 1.0
    assert samples[("image_url_governance_remaining", (("entity_kind", "record"),))] == 0.0


def _samples(text: str) -> dict[tuple[str, tuple[tuple[str, str], ...]], float]:
    return {
        (sample.name, tuple(sorted(sample.labels.items()))): sample.value
        for family in text_string_to_metric_families(text)
        for sample in family.samples
    }


def test_frontend_rewrite_event_is_counted_without_admin_key(
    governance_client: tuple[TestClient, GovernanceService],
) -> None:
    client, service = governance_client

    response = client.post(
        "/monitoring/image-url-rewrite",
        json={
            "timestamp": 1760860925123,
            "original": "http://localhost:4000/uploads/a.png",
            "resolved": f"{ORIGIN}/uploads/a.png",
            "reason": "port_rewrite",
            "frontendOrigin": "http://localhost:3000",
            "backendOrigin": ORIGIN,
        },
    )

    assert response.status_code == 200
    assert response.json() == {"success": True}
    counted = service.metrics.registry.get_sample_value(
        "image_url_rewrite_total",
        {"origin": "frontend", "reason": "port_rewrite", "entity_kind": "unknown"},
    )
    assert counted == 1.0


def test_frontend_rewrite_event_sanitises_untyped_fields(
    governance_client: tuple[TestClient, GovernanceService],
) -> None:
    client, service = governance_client

    response = client.post(
        "/monitoring/image-url-rewrite",
        json={"original": 42, "resolved": None, "reason": {"nested": True}, "entity_kind": "user", "timestamp": "soon"},
    )

    assert response.status_code == 200
    counted = service.metrics.registry.get_sample_value(
        "image_url_rewrite_total",
        {"origin": "frontend", "reason": "unknown", "entity_kind": "user"},
    )
    assert counted == 1.0
