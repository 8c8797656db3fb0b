"""
Unit tests for the monitor.
"""

import asyncio
import logging
import os
import signal

import pytest

from jobengine.constants import JobState, ReportKind
from jobengine.context import JobContext
from jobengine.monitor import Monitor
from jobengine.tracker import ChannelSink
from jobengine.worker import Worker
from tests.conftest import Email, wait_for_terminal


async def noop(job: Email, ctx: JobContext) -> None:
    pass


class CrashingWorker(Worker):
    """Worker whose loop dies immediately."""

    async def start(self) -> None:
        raise RuntimeError("worker exploded")


class TestRegistration:
    """Tests for worker registration."""

    def test_register_with_count(self, storage, worker_options):
        indexes = []

        def factory(index: int) -> Worker:
            indexes.append(index)
            return Worker(storage, noop, worker_id=f"w{index}", **worker_options)

        monitor = Monitor().register_with_count(3, factory)

        assert indexes == [0, 1, 2]
        assert [w.worker_id for w in monitor.workers] == ["w0", "w1", "w2"]

    def test_register_chains(self, storage, worker_options):
        monitor = (
            Monitor()
            .register(Worker(storage, noop, **worker_options))
            .register(Worker(storage, noop, **worker_options))
        )

        assert len(monitor.workers) == 2

    def test_invalid_count(self, storage):
        with pytest.raises(ValueError):
            Monitor().register_with_count(0, lambda i: Worker(storage, noop))


class TestRun:
    """Tests for running and shutting down workers."""

    @pytest.mark.asyncio
    async def test_no_workers(self):
        await asyncio.wait_for(Monitor().run(), timeout=1)

    @pytest.mark.asyncio
    async def test_processes_and_shuts_down(self, storage, worker_options):
        job_ids = [await storage.enqueue(Email(to=f"user{i}")) for i in range(10)]
        stop = asyncio.Event()
        monitor = Monitor().register_with_count(
            3, lambda i: Worker(storage, noop, **worker_options)
        )

        run = asyncio.create_task(monitor.run(shutdown=stop.wait()))
        envelopes = await wait_for_terminal(storage, job_ids)
        stop.set()
        await asyncio.wait_for(run, timeout=2)

        assert all(env.state == JobState.DONE for env in envelopes)
        assert all(not w.is_running for w in monitor.workers)

    @pytest.mark.asyncio
    async def test_in_flight_job_finishes(self, storage, worker_options):
        """Test that shutdown waits for the running job to complete."""
        started = asyncio.Event()
        finished = []

        async def slow(job: Email, ctx: JobContext) -> None:
            started.set()
            await asyncio.sleep(0.2)
            finished.append(job.to)

        job_id = await storage.enqueue(Email(to="a@example.com"))
        monitor = Monitor().register(Worker(storage, slow, **worker_options))

        await asyncio.wait_for(monitor.run(shutdown=started.wait()), timeout=2)

        assert finished == ["a@example.com"]
        assert (await storage.get(job_id)).state == JobState.DONE

    @pytest.mark.asyncio
    async def test_pending_jobs_stay_pending(self, storage, worker_options):
        """Test that no new job is claimed after shutdown."""
        started = asyncio.Event()

        async def slow(job: Email, ctx: JobContext) -> None:
            started.set()
            await asyncio.sleep(0.1)

        first = await storage.enqueue(Email(to="first"))
        second = await storage.enqueue(Email(to="second"))
        monitor = Monitor().register(Worker(storage, slow, **worker_options))

        await asyncio.wait_for(monitor.run(shutdown=started.wait()), timeout=2)

        assert (await storage.get(first)).state == JobState.DONE
        assert (await storage.get(second)).state == JobState.PENDING

    @pytest.mark.asyncio
    async def test_explicit_shutdown(self, storage, worker_options):
        monitor = Monitor().register(Worker(storage, noop, **worker_options))
        run = asyncio.create_task(monitor.run())
        await asyncio.sleep(0.05)

        await monitor.shutdown()

        await asyncio.wait_for(run, timeout=2)

    @pytest.mark.asyncio
    async def test_failing_shutdown_source_still_stops(self, storage, worker_options, caplog):
        async def failing_source() -> None:
            await asyncio.sleep(0.05)
            raise RuntimeError("shutdown source failed")

        monitor = Monitor().register(Worker(storage, noop, **worker_options))

        with caplog.at_level(logging.ERROR):
            await asyncio.wait_for(monitor.run(shutdown=failing_source()), timeout=2)

        assert not monitor.workers[0].is_running
        assert "Shutdown source failed" in caplog.text

    @pytest.mark.asyncio
    async def test_crashed_worker_does_not_stop_siblings(self, storage, worker_options, caplog):
        job_ids = [await storage.enqueue(Email(to=f"user{i}")) for i in range(3)]
        stop = asyncio.Event()
        monitor = (
            Monitor()
            .register(CrashingWorker(storage, noop, worker_id="crashing", **worker_options))
            .register(Worker(storage, noop, worker_id="healthy", **worker_options))
        )

        with caplog.at_level(logging.ERROR):
            run = asyncio.create_task(monitor.run(shutdown=stop.wait()))
            envelopes = await wait_for_terminal(storage, job_ids)
            stop.set()
            await asyncio.wait_for(run, timeout=2)

        assert all(env.state == JobState.DONE for env in envelopes)
        assert "Worker crashed" in caplog.text

    @pytest.mark.asyncio
    async def test_tracker_wired_into_workers(self, storage, worker_options):
        sink = ChannelSink()
        own_sink = ChannelSink()
        shared = Worker(storage, noop, **worker_options)
        private = Worker(storage, noop, tracker=own_sink, **worker_options)
        job_id = await storage.enqueue(Email(to="a@example.com"))
        stop = asyncio.Event()

        monitor = Monitor(tracker=sink).register(shared).register(private)
        run = asyncio.create_task(monitor.run(shutdown=stop.wait()))
        await wait_for_terminal(storage, [job_id])
        stop.set()
        await asyncio.wait_for(run, timeout=2)

        assert shared.tracker is sink
        assert private.tracker is own_sink
        reports = sink.drain() + own_sink.drain()
        assert [r.kind for r in reports] == [ReportKind.COMPLETED]

    @pytest.mark.asyncio
    async def test_signal_triggers_shutdown(self, storage, worker_options):
        monitor = Monitor().register(Worker(storage, noop, **worker_options))
        loop = asyncio.get_running_loop()
        loop.call_later(0.1, os.kill, os.getpid(), signal.SIGTERM)

        await asyncio.wait_for(monitor.run(handle_signals=True), timeout=2)

        assert not monitor.workers[0].is_running
