"""
End-to-end scenarios: scheduled jobs processed by a pool of rate-limited workers.
"""

import asyncio
from datetime import timedelta
from typing import ClassVar

import pytest

from jobengine import (
    ChannelSink,
    Job,
    JobContext,
    JobState,
    MemoryStorage,
    Monitor,
    RateLimitLayer,
    ReportConsumer,
    ReportKind,
    TraceLayer,
    WorkerBuilder,
)
from jobengine.backoff import ConstantBackoff
from jobengine.types.job import utcnow
from tests.conftest import wait_for_terminal


class WelcomeEmail(Job):
    job_name: ClassVar[str] = "scenario.welcome_email"

    to: str
    text: str
    subject: str


class TestEmailScenario:
    """Scheduled email delivery across several workers."""

    @pytest.mark.asyncio
    async def test_scheduled_emails_delivered_once(self, metrics):
        storage = MemoryStorage(WelcomeEmail, backoff=ConstantBackoff(0))
        delivered: list[str] = []
        spacing = 0.01

        async def send_email(job: WelcomeEmail, ctx: JobContext) -> None:
            delivered.append(job.to)

        start = utcnow()
        job_ids = [
            await storage.schedule(
                WelcomeEmail(
                    to=f"user{i}@example.com",
                    text="Welcome aboard",
                    subject="Welcome",
                ),
                start + timedelta(seconds=i * spacing),
            )
            for i in range(100)
        ]

        rate_limit = RateLimitLayer(10, timedelta(milliseconds=10), metrics=metrics)
        trace = TraceLayer()

        def build(index: int):
            return (
                WorkerBuilder(storage)
                .layer(rate_limit)
                .layer(trace)
                .handler(send_email)
                .worker_id(f"email-worker-{index}")
                .poll_interval(0.005)
                .metrics(metrics)
                .build()
            )

        stop = asyncio.Event()
        monitor = Monitor().register_with_count(5, build)
        run = asyncio.create_task(monitor.run(shutdown=stop.wait()))

        envelopes = await wait_for_terminal(storage, job_ids, timeout=15)
        stop.set()
        await asyncio.wait_for(run, timeout=5)

        assert all(env.state == JobState.DONE for env in envelopes)
        assert all(env.attempts == 1 for env in envelopes)
        assert sorted(delivered) == sorted(f"user{i}@example.com" for i in range(100))
        # No job ran before its scheduled time
        for env in envelopes:
            assert env.done_at >= env.run_at

    @pytest.mark.asyncio
    async def test_progress_observed_outside_workers(self, metrics):
        storage = MemoryStorage(WelcomeEmail, backoff=ConstantBackoff(0))
        sink = ChannelSink()
        observed = []
        consumer = ReportConsumer(sink, observed.append)
        consumer.start()

        async def send_email(job: WelcomeEmail, ctx: JobContext) -> None:
            for percent in (25, 50, 75, 100):
                ctx.update_progress(percent)

        job_ids = [
            await storage.enqueue(WelcomeEmail(to=f"u{i}", text="hi", subject="s"))
            for i in range(3)
        ]

        stop = asyncio.Event()
        monitor = Monitor(tracker=sink).register_with_count(
            2,
            lambda i: WorkerBuilder(storage)
            .handler(send_email)
            .poll_interval(0.005)
            .metrics(metrics)
            .build(),
        )
        run = asyncio.create_task(monitor.run(shutdown=stop.wait()))
        await wait_for_terminal(storage, job_ids)
        stop.set()
        await asyncio.wait_for(run, timeout=5)
        await consumer.stop()

        for job_id in job_ids:
            reports = [r for r in observed if r.job_id == job_id]
            assert [r.progress for r in reports if r.kind == ReportKind.PROGRESS] == [25, 50, 75, 100]
            assert reports[-1].kind == ReportKind.COMPLETED
