"""
Execution context passed to job handlers.
"""

from typing import Any, TypeVar
from uuid import UUID

from jobengine.constants import Outcome
from jobengine.tracker import JobTracker
from jobengine.types.job import Envelope

T = TypeVar("T")


class JobContext:
    """
    Context for one execution of one job.

    Holds a type-keyed bag of extensions (at most one value per type) and an
    optional tracker. A fresh context is built for every attempt, so nothing
    inserted here survives a retry; only the envelope persists.
    """

    def __init__(
        self,
        envelope: Envelope | None = None,
        tracker: JobTracker | None = None,
    ):
        self._envelope = envelope
        self._extensions: dict[type, Any] = {}
        self._tracker = tracker

    @property
    def envelope(self) -> Envelope | None:
        """Snapshot of the claimed envelope."""
        return self._envelope

    @property
    def job_id(self) -> UUID | None:
        return self._envelope.id if self._envelope else None

    @property
    def attempts(self) -> int:
        return self._envelope.attempts if self._envelope else 0

    @property
    def max_attempts(self) -> int:
        return self._envelope.max_attempts if self._envelope else 0

    @property
    def is_last_attempt(self) -> bool:
        """Check if a failure now would kill the job."""
        return self.attempts >= self.max_attempts

    @property
    def remaining_attempts(self) -> int:
        """Get remaining retry attempts."""
        return max(0, self.max_attempts - self.attempts)

    def insert(self, value: T) -> T | None:
        """
        Store a value keyed by its type.

        Returns:
            The value previously stored for that type, if any.
        """
        key = type(value)
        previous = self._extensions.get(key)
        self._extensions[key] = value
        return previous

    def get(self, key: type[T]) -> T | None:
        """Get the value stored for a type."""
        return self._extensions.get(key)

    def remove(self, key: type[T]) -> T | None:
        """Remove and return the value stored for a type."""
        return self._extensions.pop(key, None)

    def __contains__(self, key: type) -> bool:
        return key in self._extensions

    @property
    def tracker(self) -> JobTracker | None:
        return self._tracker

    def set_tracker(self, tracker: JobTracker) -> None:
        self._tracker = tracker

    def update_progress(self, percent: int) -> None:
        """
        Report progress to the bound tracker. A no-op when none is bound.

        Raises:
            ValueError: If percent is outside 0..100.
        """
        if not 0 <= percent <= 100:
            raise ValueError(f"Progress must be between 0 and 100, got {percent}")
        if self._tracker is not None:
            self._tracker.update_progress(percent)

    def ack(self) -> Outcome:
        return Outcome.SUCCESS

    def retry(self) -> Outcome:
        return Outcome.RETRY

    def kill(self) -> Outcome:
        return Outcome.KILL

    def __repr__(self) -> str:
        return f"JobContext(job_id={self.job_id}, attempts={self.attempts})"
