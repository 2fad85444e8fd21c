from __future__ import annotations

import asyncio
from typing import Any

from image_governance.core.urls import RewriteReason
from image_governance.schemas.governance import PreviewSummary
from image_governance.services.alerts import (
    AdminRecipientResolver,
    AlertThresholds,
    InvalidUrlAlerter,
    evaluate_invalid_alert,
)
from image_governance.services.notifications import AlertDispatchError
from image_governance.services.store import InMemoryDocumentStore, RepositoryUnavailableError


class RecordingSink:
    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []

    async def notify(self, **kwargs: Any) -> None:
        self.calls.append(kwargs)


class FailingSink:
    async def notify(self, **kwargs: Any) -> None:
        raise AlertDispatchError("notification service returned 502")


def test_count_threshold_is_inclusive() -> None:
    thresholds = AlertThresholds(invalid_count=50, invalid_ratio=0.5)

    at_threshold = evaluate_invalid_alert(_summary(invalid=50, total=1000), thresholds)
    below_threshold = evaluate_invalid_alert(_summary(invalid=49, total=1000), thresholds)

    assert at_threshold.triggered is True
    assert below_threshold.triggered is False


def test_ratio_threshold_fires_on_small_runs() -> None:
    evaluation = evaluate_invalid_alert(_summary(invalid=1, total=20), AlertThresholds())

    assert evaluation.invalid_ratio == 0.05
    assert evaluation.triggered is True
    assert evaluation.severity == "low"
    assert evaluation.priority == "high"


def test_severity_follows_invalid_ratio() -> None:
    thresholds = AlertThresholds()

    assert evaluate_invalid_alert(_summary(invalid=10, total=100), thresholds).severity == "medium"
    high = evaluate_invalid_alert(_summary(invalid=20, total=100), thresholds)
    assert high.severity == "high"
    assert high.priority == "urgent"


def test_empty_summary_never_triggers() -> None:
    evaluation = evaluate_invalid_alert(PreviewSummary(), AlertThresholds())

    assert evaluation.invalid_ratio == 0.0
    assert evaluation.triggered is False


def test_alert_is_sent_to_first_admin() -> None:
    sink = RecordingSink()
    store = InMemoryDocumentStore(
        {"users": [{"_id": "u1", "role": "member"}, {"_id": "admin-7", "role": "admin"}]}
    )
    alerter = InvalidUrlAlerter(sink, AdminRecipientResolver(store))

    dispatched = asyncio.run(alerter.maybe_alert(_summary(invalid=60, total=100), report_file="report.json"))

    assert dispatched is True
    assert len(sink.calls) == 1
    call = sink.calls[0]
    assert call["recipient_role"] == "admin"
    assert call["severity"] == "high"
    assert call["metadata"]["recipient_id"] == "admin-7"
    assert call["metadata"]["priority"] == "urgent"
    assert call["metadata"]["by_reason"] == {RewriteReason.INVALID.value: 60, RewriteReason.PORT_REWRITE.value: 40}
    assert call["metadata"]["report_file"] == "report.json"
    assert "60 invalid image URLs" in call["message"]


def test_alert_skipped_below_thresholds() -> None:
    sink = RecordingSink()
    store = InMemoryDocumentStore({"users": [{"_id": "admin-1", "role": "admin"}]})
    alerter = InvalidUrlAlerter(sink, AdminRecipientResolver(store))

    dispatched = asyncio.run(alerter.maybe_alert(_summary(invalid=1, total=100), report_file=None))

    assert dispatched is False
    assert sink.calls == []


def test_alert_skipped_without_admin_user() -> None:
    sink = RecordingSink()
    alerter = InvalidUrlAlerter(sink, AdminRecipientResolver(InMemoryDocumentStore({"users": []})))

    dispatched = asyncio.run(alerter.maybe_alert(_summary(invalid=60, total=100), report_file=None))

    assert dispatched is False
    assert sink.calls == []


def test_alert_returns_false_when_recipient_lookup_fails() -> None:
    class UnavailableStore(InMemoryDocumentStore):
        async def find(self, collection: str, **kwargs: Any) -> list[dict[str, Any]]:
            raise RepositoryUnavailableError("users unavailable")

    alerter = InvalidUrlAlerter(RecordingSink(), AdminRecipientResolver(UnavailableStore()))

    assert asyncio.run(alerter.maybe_alert(_summary(invalid=60, total=100), report_file=None)) is False


def test_alert_returns_false_when_delivery_fails() -> None:
    store = InMemoryDocumentStore({"users": [{"_id": "admin-1", "role": "admin"}]})
    alerter = InvalidUrlAlerter(FailingSink(), AdminRecipientResolver(store))

    assert asyncio.run(alerter.maybe_alert(_summary(invalid=60, total=100), report_file=None)) is False


def _summary(*, invalid: int, total: int) -> PreviewSummary:
    by_reason = {RewriteReason.INVALID.value: invalid}
    if total > invalid:
        by_reason[RewriteReason.PORT_REWRITE.value] = total - invalid
    return PreviewSummary(total_candidates=total, by_entity_kind={"record": total}, by_reason=by_reason)
