"""
Retry backoff policies.

A policy maps the number of attempts already made to the delay before the
next attempt may be claimed. Every policy is non-decreasing in attempts.
"""

from abc import ABC, abstractmethod

from jobengine.config import get_settings


class BackoffPolicy(ABC):
    """Base class for retry backoff policies."""

    @abstractmethod
    def delay(self, attempts: int) -> float:
        """
        Get the retry delay.

        Args:
            attempts: Attempts made so far (1 after the first failure).

        Returns:
            Delay in seconds before the job becomes claimable again.
        """


class ExponentialBackoff(BackoffPolicy):
    """Exponential backoff: base * factor^(attempts-1), capped at max_delay."""

    def __init__(
        self,
        base: float = 1.0,
        factor: float = 2.0,
        max_delay: float = 300.0,
    ):
        if base < 0 or max_delay < 0:
            raise ValueError("Backoff delays must be non-negative")
        if factor < 1:
            raise ValueError("Backoff factor must be >= 1")
        self.base = base
        self.factor = factor
        self.max_delay = max_delay

    def delay(self, attempts: int) -> float:
        retry_attempt = max(1, attempts)
        return min(self.max_delay, self.base * (self.factor ** (retry_attempt - 1)))

    def __repr__(self) -> str:
        return (
            f"ExponentialBackoff(base={self.base}, factor={self.factor}, "
            f"max_delay={self.max_delay})"
        )


class ConstantBackoff(BackoffPolicy):
    """Same delay for every retry."""

    def __init__(self, delay: float = 0.0):
        if delay < 0:
            raise ValueError("Backoff delay must be non-negative")
        self._delay = delay

    def delay(self, attempts: int) -> float:
        return self._delay

    def __repr__(self) -> str:
        return f"ConstantBackoff(delay={self._delay})"


def default_backoff() -> BackoffPolicy:
    """Build the exponential policy configured in settings."""
    settings = get_settings()
    return ExponentialBackoff(
        base=settings.retry_backoff_base_seconds,
        factor=settings.retry_backoff_factor,
        max_delay=settings.retry_backoff_max_seconds,
    )
