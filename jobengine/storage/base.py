"""
Storage port: the contract every queue backend implements.

Backends provide at-least-once delivery. Claim exclusivity comes from the
backend's atomic fetch_next, never from in-process locking, so several
processes may share one backend safely.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Generic
from uuid import UUID

from jobengine.backoff import BackoffPolicy, default_backoff
from jobengine.config import get_settings
from jobengine.constants import JobState
from jobengine.exceptions import JobDecodeError
from jobengine.observability.metrics import get_metrics
from jobengine.types.job import Codec, Envelope, J, JsonCodec, utcnow

logger = logging.getLogger(__name__)


class Storage(ABC, Generic[J]):
    """
    Abstract storage for one job type.

    Implements the envelope lifecycle operations:
    - enqueue / schedule: persist a new PENDING envelope
    - fetch_next: atomically claim the oldest claimable envelope
    - ack / retry / kill: terminal disposition of a claimed attempt
    - heartbeat: renew a claim held by a long-running job
    """

    def __init__(
        self,
        job_type: type[J],
        codec: Codec[J] | None = None,
        backoff: BackoffPolicy | None = None,
        lock_timeout: float | None = None,
        max_attempts: int | None = None,
    ):
        """
        Initialize the storage.

        Args:
            job_type: The job class stored by this instance.
            codec: Payload codec. Defaults to pydantic JSON.
            backoff: Retry backoff policy. Defaults to settings.
            lock_timeout: Seconds after which an unrenewed claim is reclaimable.
            max_attempts: Default attempt ceiling for new envelopes.
        """
        settings = get_settings()

        self.job_type = job_type
        self.codec: Codec[J] = codec or JsonCodec(job_type)
        self.backoff = backoff or default_backoff()
        self.lock_timeout = (
            lock_timeout if lock_timeout is not None
            else settings.worker_lock_timeout_seconds
        )
        self.max_attempts = (
            max_attempts if max_attempts is not None
            else settings.default_max_attempts
        )
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    @property
    def job_name(self) -> str:
        """Name of the job type, used as the queue name."""
        return self.job_type.get_name()

    def encode(self, job: J) -> str:
        """Serialize a job for persistence."""
        return self.codec.encode(job)

    def decode(self, envelope: Envelope) -> J:
        """
        Deserialize an envelope payload.

        Raises:
            JobDecodeError: If the payload does not match the job type.
        """
        try:
            return self.codec.decode(envelope.payload)
        except Exception as e:
            raise JobDecodeError(
                envelope.id, f"Could not decode {envelope.job_name} payload: {e}"
            ) from e

    def new_envelope(
        self,
        job: J,
        run_at: datetime | None = None,
        max_attempts: int | None = None,
    ) -> Envelope:
        """
        Build a PENDING envelope for a job.

        Raises:
            ValueError: If max_attempts is less than 1.
        """
        if max_attempts is None:
            max_attempts = self.max_attempts
        elif max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        return Envelope(
            job_name=self.job_name,
            payload=self.encode(job),
            state=JobState.PENDING,
            run_at=run_at or utcnow(),
            max_attempts=max_attempts,
        )

    async def setup(self) -> None:
        """
        Prepare backend resources. Idempotent.

        Raises:
            StorageInitError: On unrecoverable provisioning failure.
        """

    async def enqueue(self, job: J, max_attempts: int | None = None) -> UUID:
        """Persist a job that is claimable immediately."""
        job_id = await self.push(self.new_envelope(job, max_attempts=max_attempts))
        get_metrics().record_job_enqueued(self.job_name)
        return job_id

    async def schedule(
        self,
        job: J,
        run_at: datetime,
        max_attempts: int | None = None,
    ) -> UUID:
        """Persist a job that is not claimable before ``run_at``."""
        job_id = await self.push(
            self.new_envelope(job, run_at=run_at, max_attempts=max_attempts)
        )
        get_metrics().record_job_enqueued(self.job_name)
        return job_id

    @abstractmethod
    async def push(self, envelope: Envelope) -> UUID:
        """Persist a new envelope and return its id."""

    @abstractmethod
    async def fetch_next(self, worker_id: str) -> Envelope | None:
        """
        Atomically claim the oldest claimable envelope.

        Claimable means PENDING with run_at <= now, or RUNNING with an expired
        lock and attempts left. The claim sets RUNNING, increments attempts and
        records lock_by/lock_at. Stalled claims with no attempts left are
        killed instead of reclaimed.

        Returns:
            The claimed envelope, or None if nothing is claimable.

        Raises:
            ClaimError: If the backend is unavailable.
        """

    @abstractmethod
    async def ack(self, job_id: UUID, worker_id: str | None = None) -> JobState:
        """
        Transition a claimed envelope to DONE.

        Raises:
            StaleTransitionError: If the envelope is not claimed (by worker_id).
            ClaimError: If the backend is unavailable.
        """

    @abstractmethod
    async def retry(
        self,
        job_id: UUID,
        worker_id: str | None = None,
        error: str | None = None,
    ) -> JobState:
        """
        Return a claimed envelope to PENDING with a backoff-adjusted run_at,
        or KILL it if its attempts are exhausted.

        Returns:
            The resulting state (PENDING or KILLED).
        """

    @abstractmethod
    async def kill(
        self,
        job_id: UUID,
        worker_id: str | None = None,
        error: str | None = None,
    ) -> JobState:
        """Force a claimed envelope to KILLED regardless of attempts."""

    @abstractmethod
    async def heartbeat(self, worker_id: str, job_id: UUID) -> None:
        """
        Renew lock_at on a claim held by worker_id.

        Raises:
            StaleTransitionError: If worker_id no longer holds the claim.
        """

    @abstractmethod
    async def get(self, job_id: UUID) -> Envelope | None:
        """Get an envelope by id."""

    @abstractmethod
    async def stats(self) -> dict[str, int]:
        """Get envelope counts by state for this job type."""

    async def close(self) -> None:
        """Release backend resources."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(job_name={self.job_name!r})"
