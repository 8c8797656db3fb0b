"""
Job state machine.

Storage backends consult these helpers so that every backend applies the same
transition rules.
"""

from datetime import datetime, timedelta

from jobengine.backoff import BackoffPolicy
from jobengine.constants import JobState
from jobengine.exceptions import StaleTransitionError
from jobengine.types.job import Envelope

ALLOWED_TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.PENDING: frozenset({JobState.RUNNING}),
    JobState.RUNNING: frozenset(
        {JobState.RUNNING, JobState.DONE, JobState.PENDING, JobState.KILLED}
    ),
    JobState.DONE: frozenset(),
    JobState.FAILED: frozenset(),
    JobState.KILLED: frozenset(),
}


def can_transition(source: JobState, target: JobState) -> bool:
    """Check whether ``source -> target`` is a valid transition."""
    return target in ALLOWED_TRANSITIONS.get(source, frozenset())


def ensure_running(
    envelope: Envelope | None,
    job_id,
    worker_id: str | None = None,
) -> Envelope:
    """
    Ensure an envelope is claimed, optionally by a specific worker.

    Raises:
        StaleTransitionError: If the envelope is missing, not running, or
            held by another worker.
    """
    if envelope is None:
        raise StaleTransitionError(job_id, JobState.RUNNING.value, None)
    if envelope.state != JobState.RUNNING:
        raise StaleTransitionError(job_id, JobState.RUNNING.value, envelope.state.value)
    if worker_id is not None and envelope.lock_by != worker_id:
        raise StaleTransitionError(
            job_id,
            f"{JobState.RUNNING.value} by {worker_id}",
            f"{envelope.state.value} by {envelope.lock_by}",
        )
    return envelope


def next_retry_state(
    envelope: Envelope,
    now: datetime,
    backoff: BackoffPolicy,
) -> tuple[JobState, datetime]:
    """
    Decide where a failed attempt goes.

    Returns:
        (PENDING, now + backoff) while attempts remain, else (KILLED, run_at).
    """
    if envelope.attempts >= envelope.max_attempts:
        return JobState.KILLED, envelope.run_at
    delay = backoff.delay(envelope.attempts)
    return JobState.PENDING, now + timedelta(seconds=delay)
