from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from uuid import uuid4

from image_governance.schemas.governance import PreviewResult

DEFAULT_PREVIEW_TTL_SECONDS = 30 * 60


@dataclass(slots=True, frozen=True)
class PreviewJob:
    job_id: str
    created_at: float
    result: PreviewResult


class PreviewJobStore:
    """Keeps preview results around until they are executed or go stale.

    There is no locking: ``get`` hands back the stored result and a sweep that
    runs afterwards only drops the store's own reference to it.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_PREVIEW_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._jobs: dict[str, PreviewJob] = {}

    def __len__(self) -> int:
        return len(self._jobs)

    def put(self, result: PreviewResult) -> str:
        now = self._clock()
        job_id = f"gov_{int(now * 1000)}_{uuid4().hex[:8]}"
        self._jobs[job_id] = PreviewJob(job_id=job_id, created_at=now, result=result)
        self.sweep()
        return job_id

    def get(self, job_id: str) -> PreviewResult | None:
        job = self._jobs.get(job_id)
        if job is None:
            return None
        if self._is_expired(job, self.ttl_seconds):
            self._jobs.pop(job_id, None)
            return None
        return job.result

    def sweep(self, max_age_seconds: float | None = None) -> int:
        max_age = self.ttl_seconds if max_age_seconds is None else max_age_seconds
        expired = [job_id for job_id, job in self._jobs.items() if self._is_expired(job, max_age)]
        for job_id in expired:
            self._jobs.pop(job_id, None)
        return len(expired)

    def _is_expired(self, job: PreviewJob, max_age_seconds: float) -> bool:
        return self._clock() - job.created_at > max_age_seconds
