from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

REMAINING_METRIC = "image_url_governance_remaining"


class GovernanceMetrics:
    """Prometheus instruments for URL rewrites and governance progress."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self.rewrites = Counter(
            "image_url_rewrite_total",
            "Image URL rewrites by origin, reason and entity kind",
            ["origin", "reason", "entity_kind"],
            registry=self.registry,
        )
        self.batch_duration = Histogram(
            "image_url_governance_batch_duration_seconds",
            "Duration of governance preview/execute batches",
            ["origin", "type", "entity_kind"],
            registry=self.registry,
        )
        self.processed = Counter(
            "image_url_governance_processed",
            "Candidates processed by governance executions",
            ["entity_kind"],
            registry=self.registry,
        )
        self.remaining = Gauge(
            REMAINING_METRIC,
            "Candidates still outstanding per entity kind",
            ["entity_kind"],
            registry=self.registry,
        )

    def record_rewrite(self, origin: str, reason: str, entity_kind: str) -> None:
        self.rewrites.labels(origin=origin, reason=reason, entity_kind=entity_kind).inc()

    def record_batch(self, origin: str, batch_type: str, entity_kind: str, duration_ms: float) -> None:
        self.batch_duration.labels(origin=origin, type=batch_type, entity_kind=entity_kind).observe(
            max(0.0, duration_ms) / 1000.0
        )

    def record_progress(self, processed_by_kind: dict[str, int], remaining_by_kind: dict[str, float]) -> None:
        for entity_kind, count in processed_by_kind.items():
            if count > 0:
                self.processed.labels(entity_kind=entity_kind).inc(count)
        for entity_kind, remaining in remaining_by_kind.items():
            self.remaining.labels(entity_kind=entity_kind).set(remaining)

    def remaining_snapshot(self) -> dict[str, float]:
        snapshot: dict[str, float] = {}
        for metric in self.remaining.collect():
            for sample in metric.samples:
                if sample.name == REMAINING_METRIC:
                    snapshot[sample.labels["entity_kind"]] = float(sample.value)
        return snapshot

    def render(self) -> bytes:
        return generate_latest(self.registry)
