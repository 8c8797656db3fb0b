"""
Rate limiting layer and limiter.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import timedelta

from jobengine.constants import Outcome
from jobengine.layers.base import JobRequest, Layer, Service
from jobengine.observability.metrics import MetricsCollector, get_metrics

logger = logging.getLogger(__name__)


@dataclass
class PermitWindow:
    """
    Fixed window of permits.

    A window opens on the first acquisition after the previous one closed and
    holds ``permits`` permits until ``until``.
    """

    permits: int
    per: float  # window length in seconds
    remaining: int = 0
    until: float = 0.0

    def try_acquire(self, now: float) -> bool:
        """
        Try to take one permit.

        Args:
            now: Current monotonic time.

        Returns:
            True if a permit was taken, False if the window is exhausted.
        """
        if now >= self.until:
            self.until = now + self.per
            self.remaining = self.permits

        if self.remaining > 0:
            self.remaining -= 1
            return True

        return False

    def wait_time(self, now: float) -> float:
        """Time in seconds until the next window opens."""
        if self.remaining > 0 or now >= self.until:
            return 0.0
        return self.until - now


class RateLimiter:
    """
    Async limiter allowing ``permits`` acquisitions per ``per`` seconds.

    One instance is shared by every worker using the same layer. Waiters
    suspend on an asyncio lock, so acquisitions are serialized and no call
    ever errors because of the limit.
    """

    def __init__(self, permits: int, per: float | timedelta):
        """
        Initialize the limiter.

        Args:
            permits: Permits per window.
            per: Window length in seconds or as a timedelta.
        """
        if isinstance(per, timedelta):
            per = per.total_seconds()
        if permits < 1:
            raise ValueError("permits must be >= 1")
        if per <= 0:
            raise ValueError("per must be positive")

        self._window = PermitWindow(permits=permits, per=per)
        self._lock = asyncio.Lock()

    @property
    def permits(self) -> int:
        return self._window.permits

    @property
    def per(self) -> float:
        return self._window.per

    async def acquire(self) -> float:
        """
        Wait for a permit.

        Returns:
            Seconds spent waiting.
        """
        started = time.monotonic()
        async with self._lock:
            while True:
                now = time.monotonic()
                if self._window.try_acquire(now):
                    return now - started
                await asyncio.sleep(self._window.wait_time(now))


class RateLimitLayer(Layer):
    """Layer that takes one permit from a shared limiter before each execution."""

    def __init__(
        self,
        permits: int,
        per: float | timedelta,
        metrics: MetricsCollector | None = None,
    ):
        self.limiter = RateLimiter(permits, per)
        self._metrics = metrics

    async def __call__(self, request: JobRequest, call_next: Service) -> Outcome:
        waited = await self.limiter.acquire()
        if waited > 0:
            (self._metrics or get_metrics()).record_rate_limit_wait(waited)
            logger.debug(
                "Rate limit permit acquired",
                extra={"job_id": str(request.envelope.id), "waited": f"{waited:.3f}s"}
            )
        return await call_next(request)

    def __repr__(self) -> str:
        return f"RateLimitLayer(permits={self.limiter.permits}, per={self.limiter.per})"
