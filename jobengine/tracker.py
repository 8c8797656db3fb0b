"""
Tracker channel for job reports.

Running jobs send progress through a JobTracker bound to their id. Sends are
fire-and-forget: a slow or vanished observer never blocks or fails a handler.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Protocol
from uuid import UUID

from jobengine.config import get_settings
from jobengine.constants import EVENT_PROGRESS_UPDATE
from jobengine.types.events import JobReport

logger = logging.getLogger(__name__)

# Observer callback for a ReportConsumer; may be sync or async
ReportObserver = Callable[[JobReport], Awaitable[None] | None]


class ReportSink(Protocol):
    """Addressable sink accepting job reports. ``send`` must not block."""

    def send(self, report: JobReport) -> None: ...


class ChannelSink:
    """
    Sink backed by an asyncio queue.

    The sending side is shared by every execution; the receiving side
    belongs to the observer, which reads with ``receive()`` or through a ReportConsumer.
    """

    def __init__(self, maxsize: int | None = None):
        """
        Initialize the channel.

        Args:
            maxsize: Queue bound; 0 means unbounded. Defaults to settings.
        """
        if maxsize is None:
            maxsize = get_settings().tracker_queue_size
        self._queue: asyncio.Queue[JobReport] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, report: JobReport) -> None:
        """Enqueue a report, dropping it if the channel is full or closed."""
        if self._closed:
            self.dropped += 1
            return
        try:
            self._queue.put_nowait(report)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.debug(
                "Tracker channel full, report dropped",
                extra={"job_id": str(report.job_id), "kind": report.kind.value}
            )

    async def receive(self) -> JobReport:
        """Wait for the next report."""
        return await self._queue.get()

    def receive_nowait(self) -> JobReport | None:
        """Get a report if one is buffered."""
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def drain(self) -> list[JobReport]:
        """Get every buffered report."""
        reports = []
        while (report := self.receive_nowait()) is not None:
            reports.append(report)
        return reports

    def close(self) -> None:
        """Stop accepting reports. Buffered reports can still be received."""
        self._closed = True

    def __len__(self) -> int:
        return self._queue.qsize()


class ReportConsumer:
    """
    Background task forwarding reports from a channel to an observer.

    Observer failures are logged and never reach the sending job.
    """

    def __init__(self, channel: ChannelSink, observer: ReportObserver):
        self.channel = channel
        self._observer = observer
        self._task: asyncio.Task | None = None

    def start(self) -> None:
        """Start consuming in a background task."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._consume(), name="report-consumer")

    async def stop(self) -> None:
        """Deliver buffered reports, then stop the background task."""
        if self._task is None:
            return

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

        for report in self.channel.drain():
            await self._deliver(report)

    async def _consume(self) -> None:
        while True:
            report = await self.channel.receive()
            await self._deliver(report)

    async def _deliver(self, report: JobReport) -> None:
        try:
            result = self._observer(report)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(
                "Report observer failed",
                extra={"job_id": str(report.job_id), "kind": report.kind.value}
            )


class JobTracker:
    """Handle binding a job id to a report sink."""

    def __init__(self, job_id: UUID, sink: ReportSink):
        self.job_id = job_id
        self.sink = sink

    def update_progress(self, percent: int) -> None:
        """Send a progress report."""
        logger.info(
            EVENT_PROGRESS_UPDATE,
            extra={"job_id": str(self.job_id), "progress": percent}
        )
        self.report(JobReport.progress_update(self.job_id, percent))

    def report(self, report: JobReport) -> None:
        """Send a report, dropping it if the sink fails."""
        try:
            self.sink.send(report)
        except Exception:
            logger.warning(
                "Tracker sink rejected report",
                exc_info=True,
                extra={"job_id": str(self.job_id), "kind": report.kind.value}
            )

    def __repr__(self) -> str:
        return f"JobTracker(job_id={self.job_id})"
