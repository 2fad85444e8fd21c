from typing import Annotated, Literal

from pydantic import BaseModel, Field, StringConstraints

from image_governance.core.urls import RewriteReason

AnalyticsRange = Literal["day", "week", "month"]
ExecutionKind = Literal["executed", "rescanned"]


class PreviewChange(BaseModel):
    entity_kind: str
    document_id: str
    field_path: str
    original_value: str
    resolved_value: str
    reason_code: RewriteReason


class PreviewSummary(BaseModel):
    total_candidates: int = 0
    by_entity_kind: dict[str, int] = Field(default_factory=dict)
    by_reason: dict[str, int] = Field(default_factory=dict)


class PreviewResult(BaseModel):
    started_at: int
    finished_at: int
    duration_ms: int
    summary: PreviewSummary
    sample_changes: list[PreviewChange] = Field(default_factory=list)
    skipped_entity_kinds: list[str] = Field(default_factory=list)


class FailureRecord(BaseModel):
    entity_kind: str
    document_id: str
    field_path: str
    error_message: str


class ExecutionResult(PreviewResult):
    job_id: str
    updated_count: int = 0
    failed_count: int = 0
    failures: list[FailureRecord] = Field(default_factory=list)
    report_file: str | None = None
    model_durations_ms: dict[str, float] = Field(default_factory=dict)
    report_persisted: bool = False
    alert_dispatched: bool = False
    remaining_computed: bool = False


class ExecutionOutcome(BaseModel):
    kind: ExecutionKind
    requested_job_id: str
    job_id: str
    result: ExecutionResult


class PreviewRequest(BaseModel):
    limit_per_entity_kind: int | None = Field(default=None, ge=1, le=50000)


class PreviewCreatedOut(BaseModel):
    job_id: str
    result: PreviewResult


class ExecuteRequest(BaseModel):
    job_id: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
    strict: bool = False


class ProgressPoint(BaseModel):
    date: str
    processed_count: int
    remaining_count: float
    completion_pct: float


class QualityPoint(BaseModel):
    date: str
    total_candidates: int
    ratios: dict[str, float] = Field(default_factory=dict)


class SlowEntityKind(BaseModel):
    entity_kind: str
    duration_ms: float
    date: str


class PerformanceSeries(BaseModel):
    durations_by_day: dict[str, dict[str, float]] = Field(default_factory=dict)
    top_slow: list[SlowEntityKind] = Field(default_factory=list)


class AnalyticsSeries(BaseModel):
    progress: list[ProgressPoint] = Field(default_factory=list)
    quality: list[QualityPoint] = Field(default_factory=list)
    performance: PerformanceSeries = Field(default_factory=PerformanceSeries)


class PreviewBreakdown(BaseModel):
    date: str
    total_candidates: int
    by_entity_kind: dict[str, int] = Field(default_factory=dict)
    by_reason: dict[str, int] = Field(default_factory=dict)


class AnalyticsBreakdown(BaseModel):
    remaining_by_entity_kind: dict[str, float] = Field(default_factory=dict)
    latest_preview: PreviewBreakdown | None = None


class DailyAnalyticsOut(BaseModel):
    range: AnalyticsRange
    series: AnalyticsSeries
    breakdown: AnalyticsBreakdown
