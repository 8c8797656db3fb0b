"""
Monitor supervising a group of workers.

The monitor starts every registered worker as an asyncio task, waits for a
shutdown trigger (an awaitable or SIGINT/SIGTERM) and then stops the workers,
letting in-flight jobs finish before it returns.
"""

import asyncio
import logging
import signal
from collections.abc import Awaitable, Callable

from jobengine.tracker import ReportSink
from jobengine.worker.worker import Worker

logger = logging.getLogger(__name__)

# Type alias for worker factories used by register_with_count
WorkerFactory = Callable[[int], Worker]


class Monitor:
    """
    Runs workers concurrently and coordinates their graceful shutdown.

    A worker crashing does not stop its siblings; the crash is logged once
    all workers have returned.
    """

    def __init__(self, tracker: ReportSink | None = None):
        """
        Initialize the monitor.

        Args:
            tracker: Sink wired into every registered worker that has none.
        """
        self.tracker = tracker
        self._workers: list[Worker] = []
        self._pending: set[asyncio.Task] = set()

    @property
    def workers(self) -> list[Worker]:
        return list(self._workers)

    def register(self, worker: Worker) -> "Monitor":
        """Add a worker."""
        self._workers.append(worker)
        return self

    def register_with_count(self, count: int, factory: WorkerFactory) -> "Monitor":
        """
        Add ``count`` workers built by ``factory(index)``.

        Raises:
            ValueError: If count is less than 1.
        """
        if count < 1:
            raise ValueError("count must be >= 1")

        for index in range(count):
            self.register(factory(index))

        logger.info("Registered workers", extra={"count": count})
        return self

    async def run(
        self,
        shutdown: Awaitable | None = None,
        handle_signals: bool = False,
    ) -> None:
        """
        Run all workers until they stop.

        Args:
            shutdown: Awaitable whose completion triggers a graceful shutdown.
            handle_signals: Also shut down on SIGINT and SIGTERM.
        """
        if not self._workers:
            logger.warning("Monitor has no workers to run")
            return

        if self.tracker is not None:
            for worker in self._workers:
                if worker.tracker is None:
                    worker.set_tracker(self.tracker)

        logger.info("Monitor starting", extra={"count": len(self._workers)})

        tasks = [
            asyncio.create_task(worker.start(), name=f"worker-{worker.worker_id}")
            for worker in self._workers
        ]

        watcher = None
        if shutdown is not None:
            watcher = asyncio.create_task(self._watch(shutdown))

        loop = asyncio.get_running_loop()
        installed = self._install_signal_handlers(loop) if handle_signals else []

        try:
            results = await asyncio.gather(*tasks, return_exceptions=True)
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)
            if watcher is not None:
                watcher.cancel()
                try:
                    await watcher
                except asyncio.CancelledError:
                    pass
                except Exception:
                    logger.exception("Shutdown watcher failed")

        for worker, result in zip(self._workers, results):
            if isinstance(result, BaseException):
                logger.error(
                    f"Worker crashed: {result!r}",
                    exc_info=result,
                    extra={"worker_id": worker.worker_id}
                )

        logger.info("Monitor stopped")

    async def shutdown(self) -> None:
        """Ask every worker to stop claiming. In-flight jobs still finish."""
        logger.info("Monitor shutting down", extra={"count": len(self._workers)})
        for worker in self._workers:
            await worker.stop()

    async def _watch(self, shutdown: Awaitable) -> None:
        """Shut down once the awaitable completes, even if it raised."""
        try:
            await shutdown
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Shutdown source failed")
        await self.shutdown()

    def _install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> list[int]:
        installed = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._on_signal, sig)
            except (NotImplementedError, RuntimeError):
                logger.warning(
                    "Signal handlers not supported on this platform",
                    extra={"signal": sig.name}
                )
                continue
            installed.append(sig)
        return installed

    def _on_signal(self, sig: signal.Signals) -> None:
        logger.info("Received shutdown signal", extra={"signal": sig.name})
        task = asyncio.get_running_loop().create_task(self.shutdown())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
