"""
Tracing layer.

Emits structured start/end events and an OpenTelemetry span around each
execution. It never changes the outcome: faults are recorded and re-raised.
"""

import logging
import time

from opentelemetry.trace import Status, StatusCode, Tracer

from jobengine.constants import EVENT_JOB_FINISHED, EVENT_JOB_STARTED, SPAN_EXECUTE_JOB, Outcome
from jobengine.layers.base import JobRequest, Layer, Service
from jobengine.observability.tracing import get_tracer

logger = logging.getLogger(__name__)


class TraceLayer(Layer):
    """Layer recording job id, name, duration and outcome of every execution."""

    def __init__(self, tracer: Tracer | None = None, level: int = logging.INFO):
        """
        Initialize the layer.

        Args:
            tracer: Tracer for spans. Defaults to the engine tracer.
            level: Log level for the start/end events.
        """
        self._tracer = tracer
        self.level = level

    async def __call__(self, request: JobRequest, call_next: Service) -> Outcome:
        envelope = request.envelope
        fields = envelope.summary()
        tracer = self._tracer or get_tracer()

        with tracer.start_as_current_span(SPAN_EXECUTE_JOB) as span:
            span.set_attribute("job.id", str(envelope.id))
            span.set_attribute("job.name", envelope.job_name)
            span.set_attribute("job.attempt", envelope.attempts)

            logger.log(self.level, EVENT_JOB_STARTED, extra=fields)
            start_time = time.monotonic()

            try:
                outcome = await call_next(request)
            except Exception as e:
                duration = time.monotonic() - start_time
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                span.set_attribute("job.outcome", "fault")
                logger.log(
                    self.level,
                    EVENT_JOB_FINISHED,
                    extra={
                        **fields,
                        "outcome": "fault",
                        "error": str(e),
                        "duration": f"{duration:.3f}s",
                    }
                )
                raise

            duration = time.monotonic() - start_time
            span.set_attribute("job.outcome", outcome.value)
            logger.log(
                self.level,
                EVENT_JOB_FINISHED,
                extra={**fields, "outcome": outcome.value, "duration": f"{duration:.3f}s"}
            )
            return outcome
