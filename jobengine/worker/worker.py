"""
Worker executing jobs from a storage.

The worker claims one job at a time, runs it through the layer chain and
reports the outcome back to the storage according to the job lifecycle.
"""

import asyncio
import logging
import socket
import time
from collections.abc import Sequence
from typing import Generic
from uuid import UUID, uuid4

from jobengine.config import get_settings
from jobengine.constants import JobState, Outcome
from jobengine.context import JobContext
from jobengine.exceptions import (
    ClaimError,
    ExecutionTimeout,
    HandlerFault,
    JobDecodeError,
    StaleTransitionError,
)
from jobengine.layers.base import JobRequest, Layer, compose
from jobengine.observability.logging import job_log_context
from jobengine.observability.metrics import MetricsCollector, get_metrics
from jobengine.storage.base import Storage
from jobengine.tracker import JobTracker, ReportSink
from jobengine.types.events import JobReport
from jobengine.types.job import Envelope, Handler, J

logger = logging.getLogger(__name__)


def default_worker_id() -> str:
    """Hostname plus a short random suffix."""
    return f"{socket.gethostname()}-{uuid4().hex[:8]}"


class Worker(Generic[J]):
    """
    Job worker that polls for and executes jobs.

    Features:
    - Atomic claims through the storage's fetch_next
    - Heartbeat to renew the claim while a long job runs
    - Execution timeout treated as a handler fault
    - Graceful shutdown: stops claiming, lets the current job finish
    - Exactly one terminal storage call (ack, retry or kill) per claim
    """

    def __init__(
        self,
        storage: Storage[J],
        handler: Handler,
        layers: Sequence[Layer] = (),
        worker_id: str | None = None,
        poll_interval: float | None = None,
        heartbeat_interval: float | None = None,
        execution_timeout: float | None = None,
        error_backoff: float | None = None,
        tracker: ReportSink | None = None,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the worker.

        Args:
            storage: Storage to claim jobs from. May be shared with other workers.
            handler: Async handler called with (job, context).
            layers: Layers wrapped around the handler; first is outermost.
            worker_id: Unique worker identifier. Defaults to hostname + suffix.
            poll_interval: Seconds between polls when the queue is empty.
            heartbeat_interval: Seconds between claim renewals.
            execution_timeout: Deadline for one handler invocation.
            error_backoff: Seconds to wait after a storage failure.
            tracker: Sink receiving job reports.
            metrics: Metrics collector. Defaults to the global one.
        """
        settings = get_settings()

        self.storage = storage
        self.worker_id = worker_id or default_worker_id()
        self.layers = list(layers)
        self.poll_interval = (
            poll_interval if poll_interval is not None
            else settings.worker_poll_interval_seconds
        )
        self.heartbeat_interval = (
            heartbeat_interval if heartbeat_interval is not None
            else settings.worker_heartbeat_interval_seconds
        )
        self.execution_timeout = (
            execution_timeout if execution_timeout is not None
            else settings.worker_execution_timeout_seconds
        )
        self.error_backoff = (
            error_backoff if error_backoff is not None
            else settings.worker_error_backoff_seconds
        )
        self.tracker = tracker

        self._handler = handler
        self._service = compose(self.layers, self._invoke)
        self._metrics = metrics or get_metrics()
        self._shutdown = asyncio.Event()
        self._running = False
        self._current: Envelope | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def current_job_id(self) -> UUID | None:
        """Id of the job being executed, if any."""
        return self._current.id if self._current else None

    def set_tracker(self, tracker: ReportSink) -> None:
        self.tracker = tracker

    async def start(self) -> None:
        """Run the claim/execute loop until stop() is called."""
        logger.info(
            "Worker starting",
            extra={"worker_id": self.worker_id, "job_name": self.storage.job_name}
        )

        self._running = True
        self._metrics.active_workers.inc()

        try:
            while not self._shutdown.is_set():
                try:
                    processed = await self.run_once()
                except ClaimError as e:
                    logger.warning(
                        f"Storage unavailable, backing off: {e}",
                        extra={"worker_id": self.worker_id}
                    )
                    self._metrics.record_storage_error(e.operation)
                    await self._sleep(self.error_backoff)
                    continue
                except Exception as e:
                    logger.exception(
                        f"Error in worker loop: {e}",
                        extra={"worker_id": self.worker_id}
                    )
                    await self._sleep(self.error_backoff)
                    continue

                # If no job was claimed, wait before polling again
                if not processed:
                    await self._sleep(self.poll_interval)
        finally:
            self._running = False
            self._metrics.active_workers.dec()
            logger.info("Worker stopped", extra={"worker_id": self.worker_id})

    async def stop(self) -> None:
        """Stop claiming new jobs. The current job is allowed to finish."""
        if not self._shutdown.is_set():
            logger.info("Worker stopping", extra={"worker_id": self.worker_id})
        self._shutdown.set()

    async def run_once(self) -> bool:
        """
        Claim and execute at most one job.

        Returns:
            True if a job was claimed.

        Raises:
            ClaimError: If the claim itself failed.
        """
        envelope = await self.storage.fetch_next(self.worker_id)
        if envelope is None:
            return False

        self._metrics.record_job_claimed(self.worker_id)
        await self._execute(envelope)
        return True

    async def _sleep(self, seconds: float) -> None:
        """Sleep, waking early on shutdown."""
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _execute(self, envelope: Envelope) -> None:
        """
        Execute a claimed job.

        Handles the full attempt:
        1. Build a fresh context (with tracker if wired)
        2. Run the layer chain around the handler
        3. Map the outcome to ack, retry or kill
        """
        start_time = time.monotonic()
        context = JobContext(envelope=envelope)
        if self.tracker is not None:
            context.set_tracker(JobTracker(envelope.id, self.tracker))

        outcome: Outcome | None = None
        error: HandlerFault | None = None

        with job_log_context(
            job_id=str(envelope.id),
            job_name=envelope.job_name,
            attempt=envelope.attempts,
            worker_id=self.worker_id,
        ):
            self._current = envelope
            heartbeat = asyncio.create_task(self._heartbeat_loop(envelope.id))

            try:
                job = self.storage.decode(envelope)
                outcome = await self._service(
                    JobRequest(envelope=envelope, job=job, context=context)
                )
                if not isinstance(outcome, Outcome):
                    outcome = Outcome.SUCCESS
            except JobDecodeError as e:
                # The payload will never decode, so retrying is pointless
                error = e
                outcome = Outcome.KILL
            except HandlerFault as e:
                error = e
            except Exception as e:
                error = HandlerFault(envelope.id, f"Execution failed: {e}")
                error.__cause__ = e
            finally:
                heartbeat.cancel()
                try:
                    await heartbeat
                except asyncio.CancelledError:
                    pass
                except Exception:
                    logger.exception(
                        "Heartbeat task failed",
                        extra={"job_id": str(envelope.id)}
                    )
                self._current = None

            await self._finalize(
                envelope,
                outcome,
                error,
                time.monotonic() - start_time,
                context,
            )

    async def _invoke(self, request: JobRequest) -> Outcome:
        """Innermost stage: call the handler under the execution timeout."""
        envelope = request.envelope
        try:
            if self.execution_timeout is None:
                result = await self._handler(request.job, request.context)
            else:
                try:
                    result = await asyncio.wait_for(
                        self._handler(request.job, request.context),
                        timeout=self.execution_timeout,
                    )
                except asyncio.TimeoutError as e:
                    raise ExecutionTimeout(envelope.id, self.execution_timeout) from e
        except HandlerFault:
            raise
        except Exception as e:
            raise HandlerFault(envelope.id, f"{type(e).__name__}: {e}") from e

        return result if isinstance(result, Outcome) else Outcome.SUCCESS

    async def _finalize(
        self,
        envelope: Envelope,
        outcome: Outcome | None,
        error: HandlerFault | None,
        duration: float,
        context: JobContext,
    ) -> None:
        """Perform the single terminal storage call for this attempt."""
        job_id = envelope.id
        error_message = str(error) if error is not None else None

        if error is None:
            label = outcome.value
        elif isinstance(error, ExecutionTimeout):
            label = "timeout"
        else:
            label = "fault"

        state: JobState | None = None
        try:
            if outcome == Outcome.SUCCESS:
                state = await self.storage.ack(job_id, worker_id=self.worker_id)
            elif outcome == Outcome.KILL:
                state = await self.storage.kill(
                    job_id,
                    worker_id=self.worker_id,
                    error=error_message or "kill requested by handler",
                )
            else:
                state = await self.storage.retry(
                    job_id,
                    worker_id=self.worker_id,
                    error=error_message,
                )
        except StaleTransitionError as e:
            logger.warning(
                f"Ignoring stale transition: {e}",
                extra={"job_id": str(job_id), "outcome": label}
            )
        except ClaimError as e:
            logger.error(
                f"Failed to record job outcome: {e}",
                extra={"job_id": str(job_id), "outcome": label}
            )
            self._metrics.record_storage_error(e.operation)
            await self._sleep(self.error_backoff)
        except Exception:
            logger.exception(
                "Failed to record job outcome",
                extra={"job_id": str(job_id), "outcome": label}
            )
            await self._sleep(self.error_backoff)

        self._metrics.record_job_finished(
            job_name=envelope.job_name,
            outcome=label,
            state=state.value if state else "unknown",
            duration_seconds=duration,
        )

        if state == JobState.DONE:
            logger.info(
                "Job completed successfully",
                extra={"job_id": str(job_id), "duration": f"{duration:.2f}s"}
            )
        elif state is not None:
            logger.warning(
                "Job failed" if error is not None else "Job not completed",
                extra={
                    "job_id": str(job_id),
                    "outcome": label,
                    "error": error_message,
                    "state": state.value,
                }
            )

        tracker = context.tracker
        if tracker is None or state is None:
            return
        if state == JobState.DONE:
            tracker.report(JobReport.completed(job_id, envelope.attempts, duration))
        else:
            tracker.report(
                JobReport.failed(job_id, error_message or label, envelope.attempts, state)
            )

    async def _heartbeat_loop(self, job_id: UUID) -> None:
        """
        Periodically renew the claim on the running job.

        This prevents the job from being reclaimed by another worker
        while it is still being executed.
        """
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                await self.storage.heartbeat(self.worker_id, job_id)
                logger.debug("Extended claim", extra={"job_id": str(job_id)})
            except StaleTransitionError as e:
                logger.warning(
                    f"Claim lost during execution: {e}",
                    extra={"job_id": str(job_id)}
                )
                return
            except ClaimError as e:
                logger.warning(
                    f"Heartbeat failed: {e}",
                    extra={"job_id": str(job_id)}
                )
                self._metrics.record_storage_error(e.operation)
            except Exception:
                logger.exception(
                    "Error extending claim",
                    extra={"job_id": str(job_id)}
                )

    def __repr__(self) -> str:
        return f"Worker(worker_id={self.worker_id!r}, job_name={self.storage.job_name!r})"
