"""
In-memory storage backend.

Keeps every envelope in a dict guarded by an asyncio lock. Claims are atomic
within one event loop, which makes this backend suitable for tests and for
single-process hosts that do not need durability.
"""

import asyncio
import logging
from collections import Counter
from uuid import UUID

from jobengine.constants import STALLED_LOCK_ERROR, JobState
from jobengine.exceptions import StaleTransitionError
from jobengine.state import can_transition, ensure_running, next_retry_state
from jobengine.storage.base import Storage
from jobengine.types.job import Envelope, J, utcnow

logger = logging.getLogger(__name__)


class MemoryStorage(Storage[J]):
    """
    Storage backed by process memory.

    Envelopes are copied on the way in and out, so callers can never mutate
    stored state except through the storage operations.
    """

    def __init__(self, job_type: type[J], **kwargs):
        super().__init__(job_type, **kwargs)
        self._envelopes: dict[UUID, Envelope] = {}
        # Insertion order breaks ties between equal run_at values
        self._sequence: dict[UUID, int] = {}
        self._lock = asyncio.Lock()

    async def push(self, envelope: Envelope) -> UUID:
        async with self._lock:
            self._envelopes[envelope.id] = envelope.model_copy()
            self._sequence[envelope.id] = len(self._sequence)

        logger.debug(
            "Enqueued job",
            extra={"job_id": str(envelope.id), "run_at": envelope.run_at.isoformat()}
        )
        return envelope.id

    async def fetch_next(self, worker_id: str) -> Envelope | None:
        async with self._lock:
            now = utcnow()
            self._kill_exhausted_stalled(now)

            candidates = [
                env for env in self._envelopes.values()
                if env.is_claimable(self.lock_timeout, now)
            ]
            if not candidates:
                return None

            envelope = min(
                candidates, key=lambda env: (env.run_at, self._sequence[env.id])
            )
            if envelope.state == JobState.RUNNING:
                logger.warning(
                    "Reclaiming stalled job",
                    extra={"job_id": str(envelope.id), "previous_owner": envelope.lock_by}
                )

            envelope.state = JobState.RUNNING
            envelope.attempts += 1
            envelope.lock_by = worker_id
            envelope.lock_at = now
            return envelope.model_copy()

    def _kill_exhausted_stalled(self, now) -> None:
        """Kill stalled claims that have no attempts left."""
        for envelope in self._envelopes.values():
            if (
                envelope.state == JobState.RUNNING
                and not envelope.is_retryable
                and envelope.is_lock_expired(self.lock_timeout, now)
            ):
                logger.warning(
                    "Killing stalled job with no attempts left",
                    extra={"job_id": str(envelope.id), "attempts": envelope.attempts}
                )
                self._finish(envelope, JobState.KILLED, now, STALLED_LOCK_ERROR)

    @staticmethod
    def _finish(envelope: Envelope, state: JobState, now, error: str | None = None) -> None:
        if not can_transition(envelope.state, state):
            raise StaleTransitionError(envelope.id, JobState.RUNNING.value, envelope.state.value)
        envelope.state = state
        envelope.lock_by = None
        envelope.lock_at = None
        envelope.done_at = now
        if error is not None:
            envelope.last_error = error

    async def ack(self, job_id: UUID, worker_id: str | None = None) -> JobState:
        async with self._lock:
            envelope = ensure_running(self._envelopes.get(job_id), job_id, worker_id)
            self._finish(envelope, JobState.DONE, utcnow())
            return envelope.state

    async def retry(
        self,
        job_id: UUID,
        worker_id: str | None = None,
        error: str | None = None,
    ) -> JobState:
        async with self._lock:
            envelope = ensure_running(self._envelopes.get(job_id), job_id, worker_id)
            now = utcnow()
            state, run_at = next_retry_state(envelope, now, self.backoff)

            if state == JobState.KILLED:
                self._finish(envelope, JobState.KILLED, now, error)
                return envelope.state

            envelope.state = JobState.PENDING
            envelope.run_at = run_at
            envelope.lock_by = None
            envelope.lock_at = None
            if error is not None:
                envelope.last_error = error
            return envelope.state

    async def kill(
        self,
        job_id: UUID,
        worker_id: str | None = None,
        error: str | None = None,
    ) -> JobState:
        async with self._lock:
            envelope = ensure_running(self._envelopes.get(job_id), job_id, worker_id)
            self._finish(envelope, JobState.KILLED, utcnow(), error)
            return envelope.state

    async def heartbeat(self, worker_id: str, job_id: UUID) -> None:
        async with self._lock:
            envelope = ensure_running(self._envelopes.get(job_id), job_id, worker_id)
            envelope.lock_at = utcnow()

    async def get(self, job_id: UUID) -> Envelope | None:
        async with self._lock:
            envelope = self._envelopes.get(job_id)
            return envelope.model_copy() if envelope else None

    async def stats(self) -> dict[str, int]:
        async with self._lock:
            counts = Counter(env.state.value for env in self._envelopes.values())
        return dict(counts)
