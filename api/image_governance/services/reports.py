from __future__ import annotations

import json
import logging
from datetime import date, datetime, timezone
from pathlib import Path

from pydantic import BaseModel

from image_governance.schemas.governance import ExecutionResult, PreviewResult

logger = logging.getLogger(__name__)

EXECUTION_REPORT_PREFIX = "image-url-cleanup-"
DAILY_PREVIEW_PREFIX = "daily-preview-"
REPORT_ONLY_FIELDS = {"report_persisted", "alert_dispatched"}


def execution_report_name(at: datetime) -> str:
    """``image-url-cleanup-2026-10-19T07-42-05-123Z.json`` for the given instant."""
    moment = at.astimezone(timezone.utc)
    stamp = moment.strftime("%Y-%m-%dT%H:%M:%S") + f".{moment.microsecond // 1000:03d}Z"
    return f"{EXECUTION_REPORT_PREFIX}{stamp.replace(':', '-').replace('.', '-')}.json"


def daily_preview_name(day: date) -> str:
    return f"{DAILY_PREVIEW_PREFIX}{day.isoformat()}.json"


class ReportWriter:
    def __init__(self, report_dir: str | Path) -> None:
        self.report_dir = Path(report_dir)

    def execution_report_path(self, at: datetime | None = None) -> Path:
        return self.report_dir / execution_report_name(at or datetime.now(timezone.utc))

    def daily_preview_path(self, day: date) -> Path:
        return self.report_dir / daily_preview_name(day)

    def write_execution_report(self, result: ExecutionResult, path: Path) -> bool:
        try:
            self._write(path, result, exclude=REPORT_ONLY_FIELDS)
        except OSError:
            logger.exception("failed to write governance report path=%s", path)
            return False
        logger.info("governance report written path=%s", path)
        return True

    def write_daily_preview(self, result: PreviewResult, day: date) -> Path:
        path = self.daily_preview_path(day)
        self._write(path, result)
        logger.info("daily governance preview written path=%s", path)
        return path

    def _write(self, path: Path, model: BaseModel, exclude: set[str] | None = None) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = model.model_dump(mode="json", exclude=exclude)
        path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
