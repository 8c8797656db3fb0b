"""
Job-related type definitions: the job model, its codec and the persisted envelope.
"""

from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, ClassVar, Generic, Protocol, TypeVar
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from jobengine.constants import DEFAULT_MAX_ATTEMPTS, TERMINAL_STATES, JobState, Outcome

if TYPE_CHECKING:
    from jobengine.context import JobContext


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class Job(BaseModel):
    """
    Base class for units of work.

    Subclasses declare their fields as a regular pydantic model and a stable
    ``job_name``. The name is persisted with every envelope, so it must not
    change while previously enqueued payloads still need to be processed.

    Example:
        class Email(Job):
            job_name: ClassVar[str] = "email.send"

            to: str
            subject: str

            async def handle(self, ctx: JobContext) -> Outcome | None:
                ...
    """

    job_name: ClassVar[str] = ""

    @classmethod
    def get_name(cls) -> str:
        """Get the stable job name, defaulting to the qualified class name."""
        return cls.job_name or f"{cls.__module__}.{cls.__qualname__}"

    async def handle(self, ctx: "JobContext") -> Outcome | None:
        """Default handler. Override it or pass a handler to the worker builder."""
        raise NotImplementedError(f"{self.get_name()} does not define handle()")

    @classmethod
    def defines_handle(cls) -> bool:
        """Check whether the subclass overrides the default handler."""
        return cls.handle is not Job.handle


J = TypeVar("J", bound=Job)

# Type alias for job handler functions; returning None means success
Handler = Callable[[J, "JobContext"], Awaitable[Outcome | None]]


class Codec(Protocol[J]):
    """Serialization contract for job payloads. Must round-trip exactly."""

    def encode(self, job: J) -> str: ...

    def decode(self, payload: str) -> J: ...


class JsonCodec(Generic[J]):
    """Codec using pydantic's JSON serialization."""

    def __init__(self, job_type: type[J]):
        self.job_type = job_type

    def encode(self, job: J) -> str:
        return job.model_dump_json()

    def decode(self, payload: str) -> J:
        return self.job_type.model_validate_json(payload)


class Envelope(BaseModel):
    """
    Persisted record of one job instance.

    Envelopes are only mutated through storage operations; the engine never
    deletes them.
    """

    id: UUID = Field(default_factory=uuid4)
    job_name: str
    payload: str
    state: JobState = JobState.PENDING
    run_at: datetime = Field(default_factory=utcnow)
    attempts: int = 0
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    lock_by: str | None = None
    lock_at: datetime | None = None
    last_error: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    done_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        """Check if the envelope reached Done or Killed."""
        return self.state in TERMINAL_STATES

    @property
    def is_retryable(self) -> bool:
        """Check if another attempt is allowed."""
        return self.attempts < self.max_attempts

    def is_lock_expired(self, lock_timeout: float, now: datetime | None = None) -> bool:
        """Check whether the current claim is stalled and may be reclaimed."""
        if self.lock_at is None:
            return True
        now = now or utcnow()
        return self.lock_at + timedelta(seconds=lock_timeout) < now

    def is_claimable(self, lock_timeout: float, now: datetime | None = None) -> bool:
        """Check whether fetch_next may claim this envelope right now."""
        now = now or utcnow()
        if self.state == JobState.PENDING:
            return self.run_at <= now
        if self.state == JobState.RUNNING:
            return self.is_retryable and self.is_lock_expired(lock_timeout, now)
        return False

    def summary(self) -> dict[str, Any]:
        """Fields suitable for structured log records."""
        return {
            "job_id": str(self.id),
            "job_name": self.job_name,
            "attempt": self.attempts,
            "max_attempts": self.max_attempts,
        }
