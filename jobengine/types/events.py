"""
Event type definitions for the tracker channel.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from jobengine.constants import JobState, ReportKind
from jobengine.types.job import utcnow


class JobReport(BaseModel):
    """
    Report emitted by a running job or by the worker after a transition.
    Delivered to an external observer; the engine does not interpret it.
    """

    job_id: UUID
    kind: ReportKind
    progress: int | None = Field(default=None, ge=0, le=100)
    payload: dict[str, Any] | None = None
    timestamp: datetime = Field(default_factory=utcnow)

    @classmethod
    def progress_update(cls, job_id: UUID, percent: int) -> "JobReport":
        """Create a progress report."""
        return cls(job_id=job_id, kind=ReportKind.PROGRESS, progress=percent)

    @classmethod
    def completed(
        cls,
        job_id: UUID,
        attempts: int,
        duration_seconds: float | None = None,
    ) -> "JobReport":
        """Create a completed report."""
        return cls(
            job_id=job_id,
            kind=ReportKind.COMPLETED,
            progress=100,
            payload={"attempts": attempts, "duration_seconds": duration_seconds},
        )

    @classmethod
    def failed(
        cls,
        job_id: UUID,
        error: str | None,
        attempts: int,
        state: JobState | None,
    ) -> "JobReport":
        """Create a failed report; ``state`` tells whether the job will run again."""
        return cls(
            job_id=job_id,
            kind=ReportKind.FAILED,
            payload={
                "error": error,
                "attempts": attempts,
                "state": state.value if state else None,
                "will_retry": state == JobState.PENDING,
            },
        )
