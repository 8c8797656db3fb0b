"""
Unit tests for the tracker channel.
"""

import asyncio
import logging
from uuid import uuid4

import pytest

from jobengine.constants import JobState, ReportKind
from jobengine.tracker import ChannelSink, JobTracker, ReportConsumer
from jobengine.types.events import JobReport


class TestChannelSink:
    """Tests for ChannelSink."""

    @pytest.mark.asyncio
    async def test_send_and_receive(self):
        sink = ChannelSink()
        report = JobReport.progress_update(uuid4(), 10)

        sink.send(report)

        assert await sink.receive() == report

    def test_bounded_channel_drops(self):
        """Test that a full channel drops instead of blocking."""
        sink = ChannelSink(maxsize=2)
        job_id = uuid4()

        for percent in (10, 20, 30):
            sink.send(JobReport.progress_update(job_id, percent))

        assert len(sink) == 2
        assert sink.dropped == 1
        assert [r.progress for r in sink.drain()] == [10, 20]

    def test_closed_channel_drops(self):
        sink = ChannelSink()
        sink.send(JobReport.progress_update(uuid4(), 1))

        sink.close()
        sink.send(JobReport.progress_update(uuid4(), 2))

        assert sink.closed is True
        assert sink.dropped == 1
        # Buffered reports survive close
        assert len(sink.drain()) == 1

    def test_receive_nowait_empty(self):
        assert ChannelSink().receive_nowait() is None


class TestJobTracker:
    """Tests for JobTracker."""

    def test_update_progress(self):
        sink = ChannelSink()
        job_id = uuid4()
        tracker = JobTracker(job_id, sink)

        tracker.update_progress(75)

        report = sink.receive_nowait()
        assert report.job_id == job_id
        assert report.kind == ReportKind.PROGRESS
        assert report.progress == 75

    def test_failing_sink_is_contained(self, caplog):
        """Test that a sink error never reaches the job."""

        class BrokenSink:
            def send(self, report):
                raise RuntimeError("observer gone")

        tracker = JobTracker(uuid4(), BrokenSink())

        with caplog.at_level(logging.WARNING):
            tracker.update_progress(5)

        assert "Tracker sink rejected report" in caplog.text


class TestJobReport:
    """Tests for report constructors."""

    def test_completed(self):
        report = JobReport.completed(uuid4(), attempts=2, duration_seconds=0.5)

        assert report.kind == ReportKind.COMPLETED
        assert report.progress == 100
        assert report.payload["attempts"] == 2

    def test_failed_will_retry(self):
        retrying = JobReport.failed(uuid4(), "boom", 1, JobState.PENDING)
        killed = JobReport.failed(uuid4(), "boom", 3, JobState.KILLED)

        assert retrying.payload["will_retry"] is True
        assert killed.payload["will_retry"] is False
        assert killed.payload["state"] == "killed"

    def test_progress_bounds(self):
        with pytest.raises(ValueError):
            JobReport.progress_update(uuid4(), 101)


class TestReportConsumer:
    """Tests for ReportConsumer."""

    @pytest.mark.asyncio
    async def test_forwards_to_async_observer(self):
        sink = ChannelSink()
        received = []

        async def observer(report: JobReport) -> None:
            received.append(report.progress)

        consumer = ReportConsumer(sink, observer)
        consumer.start()

        job_id = uuid4()
        for percent in (10, 50, 90):
            sink.send(JobReport.progress_update(job_id, percent))

        await asyncio.sleep(0.05)
        await consumer.stop()

        assert received == [10, 50, 90]

    @pytest.mark.asyncio
    async def test_stop_delivers_buffered_reports(self):
        sink = ChannelSink()
        received = []
        consumer = ReportConsumer(sink, received.append)

        consumer.start()
        sink.send(JobReport.progress_update(uuid4(), 1))
        sink.send(JobReport.progress_update(uuid4(), 2))
        await consumer.stop()

        assert [r.progress for r in received] == [1, 2]

    @pytest.mark.asyncio
    async def test_observer_failure_logged(self, caplog):
        sink = ChannelSink()
        received = []

        def observer(report: JobReport) -> None:
            if report.progress == 1:
                raise ValueError("bad report")
            received.append(report.progress)

        consumer = ReportConsumer(sink, observer)
        consumer.start()

        with caplog.at_level(logging.ERROR):
            sink.send(JobReport.progress_update(uuid4(), 1))
            sink.send(JobReport.progress_update(uuid4(), 2))
            await asyncio.sleep(0.05)
            await consumer.stop()

        assert received == [2]
        assert "Report observer failed" in caplog.text
