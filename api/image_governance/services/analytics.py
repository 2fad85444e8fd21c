from __future__ import annotations

import json
import logging
import re
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from image_governance.core.urls import RewriteReason
from image_governance.schemas.governance import (
    AnalyticsBreakdown,
    AnalyticsRange,
    AnalyticsSeries,
    DailyAnalyticsOut,
    PreviewBreakdown,
    ProgressPoint,
    QualityPoint,
    SlowEntityKind,
)
from image_governance.services.metrics import GovernanceMetrics
from image_governance.services.reports import DAILY_PREVIEW_PREFIX, EXECUTION_REPORT_PREFIX

logger = logging.getLogger(__name__)

RANGE_DAYS: dict[str, int] = {"day": 1, "week": 7, "month": 30}
QUALITY_REASONS = tuple(reason.value for reason in RewriteReason if reason is not RewriteReason.NONE)

_EXECUTION_REPORT_RE = re.compile(rf"^{EXECUTION_REPORT_PREFIX}(\d{{4}}-\d{{2}}-\d{{2}})T.*\.json$")
_DAILY_PREVIEW_RE = re.compile(rf"^{DAILY_PREVIEW_PREFIX}(\d{{4}}-\d{{2}}-\d{{2}})\.json$")


def range_date_keys(range_name: AnalyticsRange, today: date) -> list[str]:
    count = RANGE_DAYS[range_name]
    return [(today - timedelta(days=offset)).isoformat() for offset in range(count - 1, -1, -1)]


def execution_report_day(name: str) -> str | None:
    match = _EXECUTION_REPORT_RE.match(name)
    return match.group(1) if match else None


def daily_preview_day(name: str) -> str | None:
    match = _DAILY_PREVIEW_RE.match(name)
    return match.group(1) if match else None


class DailyAnalyticsReader:
    """Rebuilds governance trends from report files; never writes anything."""

    def __init__(self, report_dir: str | Path, metrics: GovernanceMetrics) -> None:
        self.report_dir = Path(report_dir)
        self.metrics = metrics

    def build(self, range_name: AnalyticsRange = "week", *, today: date | None = None) -> DailyAnalyticsOut:
        current_day = today or datetime.now(timezone.utc).date()
        date_keys = range_date_keys(range_name, current_day)
        names = self._list_report_names()

        previews_by_day: dict[str, dict[str, Any]] = {}
        for name in names:
            day = daily_preview_day(name)
            if day is None:
                continue
            payload = self._read_json(name)
            if payload is not None:
                previews_by_day[day] = payload

        processed_by_day: dict[str, int] = {}
        durations_by_day: dict[str, dict[str, float]] = {}
        for name in names:
            day = execution_report_day(name)
            if day is None:
                continue
            payload = self._read_json(name)
            if payload is None:
                continue
            processed_by_day[day] = processed_by_day.get(day, 0) + _as_int(payload.get("updated_count"))
            durations = payload.get("model_durations_ms")
            if isinstance(durations, dict):
                day_durations = durations_by_day.setdefault(day, {})
                for entity_kind, duration in durations.items():
                    day_durations[entity_kind] = day_durations.get(entity_kind, 0.0) + _as_float(duration)

        remaining_by_kind = self.metrics.remaining_snapshot()
        remaining_total = sum(remaining_by_kind.values())

        series = AnalyticsSeries()
        for day in date_keys:
            summary = _summary_of(previews_by_day.get(day))
            total_candidates = _as_int(summary.get("total_candidates"))
            processed = processed_by_day.get(day, 0)
            completion_base = total_candidates if total_candidates > 0 else (processed + remaining_total) or 1
            series.progress.append(
                ProgressPoint(
                    date=day,
                    processed_count=processed,
                    remaining_count=remaining_total,
                    completion_pct=max(0.0, min(1.0, processed / completion_base)),
                )
            )

            by_reason = summary.get("by_reason") if isinstance(summary.get("by_reason"), dict) else {}
            denominator = total_candidates or 1
            series.quality.append(
                QualityPoint(
                    date=day,
                    total_candidates=total_candidates,
                    ratios={reason: _as_int(by_reason.get(reason)) / denominator for reason in QUALITY_REASONS},
                )
            )

            if day in durations_by_day:
                series.performance.durations_by_day[day] = durations_by_day[day]
                for entity_kind, duration in durations_by_day[day].items():
                    series.performance.top_slow.append(
                        SlowEntityKind(entity_kind=entity_kind, duration_ms=duration, date=day)
                    )
        series.performance.top_slow.sort(key=lambda entry: entry.duration_ms, reverse=True)

        return DailyAnalyticsOut(
            range=range_name,
            series=series,
            breakdown=AnalyticsBreakdown(
                remaining_by_entity_kind=remaining_by_kind,
                latest_preview=_latest_breakdown(previews_by_day),
            ),
        )

    def _list_report_names(self) -> list[str]:
        try:
            return sorted(entry.name for entry in self.report_dir.iterdir() if entry.is_file())
        except OSError:
            return []

    def _read_json(self, name: str) -> dict[str, Any] | None:
        try:
            payload = json.loads((self.report_dir / name).read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("skipping unreadable governance report %s", name)
            return None
        return payload if isinstance(payload, dict) else None


def _latest_breakdown(previews_by_day: dict[str, dict[str, Any]]) -> PreviewBreakdown | None:
    if not previews_by_day:
        return None
    latest_day = max(previews_by_day)
    summary = _summary_of(previews_by_day[latest_day])
    by_entity_kind = summary.get("by_entity_kind")
    by_reason = summary.get("by_reason")
    return PreviewBreakdown(
        date=latest_day,
        total_candidates=_as_int(summary.get("total_candidates")),
        by_entity_kind={key: _as_int(value) for key, value in by_entity_kind.items()}
        if isinstance(by_entity_kind, dict)
        else {},
        by_reason={key: _as_int(value) for key, value in by_reason.items()} if isinstance(by_reason, dict) else {},
    )


def _summary_of(payload: dict[str, Any] | None) -> dict[str, Any]:
    if not payload:
        return {}
    summary = payload.get("summary")
    return summary if isinstance(summary, dict) else {}


def _as_int(value: Any) -> int:
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


def _as_float(value: Any) -> float:
    try:
        return max(0.0, float(value))
    except (TypeError, ValueError):
        return 0.0
