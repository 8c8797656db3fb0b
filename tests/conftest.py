"""
Pytest configuration and shared fixtures.
"""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import ClassVar
from uuid import UUID

import pytest
from prometheus_client import CollectorRegistry

from jobengine.backoff import ConstantBackoff
from jobengine.context import JobContext
from jobengine.observability.metrics import MetricsCollector
from jobengine.storage.base import Storage
from jobengine.storage.memory import MemoryStorage
from jobengine.types.job import Envelope, Job
from jobengine.worker.worker import Worker


class Email(Job):
    """Sample job without its own handler."""

    job_name: ClassVar[str] = "test.email"

    to: str
    subject: str = "hello"


class Ping(Job):
    """Sample job handling itself."""

    job_name: ClassVar[str] = "test.ping"

    seen: ClassVar[list[str]] = []

    message: str

    async def handle(self, ctx: JobContext) -> None:
        Ping.seen.append(self.message)


RunUntilTerminal = Callable[..., Awaitable[list[Envelope]]]


@pytest.fixture
def registry() -> CollectorRegistry:
    """Create an isolated Prometheus registry."""
    return CollectorRegistry()


@pytest.fixture
def metrics(registry: CollectorRegistry) -> MetricsCollector:
    """Create a metrics collector bound to the isolated registry."""
    return MetricsCollector(registry=registry)


@pytest.fixture
def storage() -> MemoryStorage[Email]:
    """Create an in-memory storage that retries immediately."""
    return MemoryStorage(Email, backoff=ConstantBackoff(0), max_attempts=3)


@pytest.fixture
def ping_storage() -> MemoryStorage[Ping]:
    """Create an in-memory storage for self-handling jobs."""
    Ping.seen.clear()
    return MemoryStorage(Ping, backoff=ConstantBackoff(0))


@pytest.fixture
def worker_options(metrics: MetricsCollector) -> dict:
    """Worker settings suitable for fast tests."""
    return {
        "poll_interval": 0.01,
        "heartbeat_interval": 0.05,
        "error_backoff": 0.01,
        "metrics": metrics,
    }


async def wait_for_terminal(
    storage: Storage,
    job_ids: Sequence[UUID],
    timeout: float = 5.0,
) -> list[Envelope]:
    """Poll a storage until every job reached Done or Killed."""

    async def poll() -> list[Envelope]:
        while True:
            envelopes = [await storage.get(job_id) for job_id in job_ids]
            if all(env is not None and env.is_terminal for env in envelopes):
                return envelopes
            await asyncio.sleep(0.01)

    return await asyncio.wait_for(poll(), timeout=timeout)


@pytest.fixture
def run_until_terminal() -> RunUntilTerminal:
    """Run a worker until the given jobs are terminal, then stop it."""

    async def run(
        worker: Worker,
        job_ids: Sequence[UUID],
        timeout: float = 5.0,
    ) -> list[Envelope]:
        task = asyncio.create_task(worker.start())
        try:
            return await wait_for_terminal(worker.storage, job_ids, timeout)
        finally:
            await worker.stop()
            await asyncio.wait_for(task, timeout=timeout)

    return run
