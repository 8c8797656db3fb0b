"""
Engine exceptions.

Only StorageInitError is allowed to escape to the host process; every other
error is contained at the worker boundary and turned into a state transition.
"""

from uuid import UUID


class JobEngineError(Exception):
    """Base class for all engine errors."""


class StorageInitError(JobEngineError):
    """Backend resources could not be provisioned. Fatal at startup."""

    def __init__(self, detail: str):
        super().__init__(f"Storage setup failed: {detail}")


class ClaimError(JobEngineError):
    """A storage operation failed because the backend is unavailable. Retryable."""

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        super().__init__(f"Storage operation '{operation}' failed: {detail}")


class StaleTransitionError(JobEngineError):
    """A state transition was attempted on an envelope not in the expected state."""

    def __init__(self, job_id: UUID, expected: str, actual: str | None):
        self.job_id = job_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Job {job_id} is {actual or 'missing'}, expected {expected}"
        )


class HandlerFault(JobEngineError):
    """The handler failed unexpectedly (as opposed to requesting retry or kill)."""

    def __init__(self, job_id: UUID, message: str):
        self.job_id = job_id
        super().__init__(message)


class ExecutionTimeout(HandlerFault):
    """The handler exceeded the configured execution deadline."""

    def __init__(self, job_id: UUID, timeout: float):
        self.timeout = timeout
        super().__init__(job_id, f"Job {job_id} timed out after {timeout}s")


class JobDecodeError(HandlerFault):
    """The persisted payload could not be decoded into the job type."""
