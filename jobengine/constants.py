"""
Engine constants.
Centralized location for all constant values used across the engine.
"""

from enum import StrEnum


class JobState(StrEnum):
    """
    Job envelope states.

    State transitions:
    - PENDING -> RUNNING (claimed by fetch_next)
    - RUNNING -> RUNNING (heartbeat, or stalled claim reclaimed)
    - RUNNING -> DONE (handler succeeded, ack)
    - RUNNING -> PENDING (retry with backoff)
    - RUNNING -> KILLED (kill requested, or attempts exhausted)

    FAILED is kept for backends that persist it; the engine never writes it.
    """

    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
    KILLED = "killed"


class Outcome(StrEnum):
    """Disposition of a single execution, chosen by the handler."""

    SUCCESS = "success"
    RETRY = "retry"
    KILL = "kill"


class ReportKind(StrEnum):
    """Kinds of reports sent over the tracker channel."""

    PROGRESS = "progress"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATES: frozenset[JobState] = frozenset({JobState.DONE, JobState.KILLED})

# Default values
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_LOCK_TIMEOUT_SECONDS = 30.0
STALLED_LOCK_ERROR = "claim lock expired with no attempts left"

# Metrics names
METRIC_JOBS_ENQUEUED = "jobengine_jobs_enqueued_total"
METRIC_JOBS_CLAIMED = "jobengine_jobs_claimed_total"
METRIC_JOBS_FINISHED = "jobengine_jobs_finished_total"
METRIC_JOB_DURATION = "jobengine_job_duration_seconds"
METRIC_STORAGE_ERRORS = "jobengine_storage_errors_total"
METRIC_RATE_LIMIT_WAIT = "jobengine_rate_limit_wait_seconds"
METRIC_ACTIVE_WORKERS = "jobengine_active_workers"

# Trace span names
SPAN_EXECUTE_JOB = "execute_job"

# Log event names
EVENT_JOB_STARTED = "job.started"
EVENT_JOB_FINISHED = "job.finished"
EVENT_PROGRESS_UPDATE = "progress.update"
