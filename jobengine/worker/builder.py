"""
Fluent construction of workers.
"""

from typing import Generic

from jobengine.context import JobContext
from jobengine.layers.base import Layer, LayerFn, from_fn
from jobengine.observability.metrics import MetricsCollector
from jobengine.storage.base import Storage
from jobengine.tracker import ReportSink
from jobengine.types.job import Handler, J, Job
from jobengine.worker.worker import Worker


async def call_job_handle(job: Job, ctx: JobContext):
    """Default handler delegating to the job's own handle method."""
    return await job.handle(ctx)


class WorkerBuilder(Generic[J]):
    """
    Builder for a worker bound to one storage.

    Example:
        worker = (
            WorkerBuilder(storage)
            .layer(RateLimitLayer(10, 0.01))
            .layer(TraceLayer())
            .handler(send_email)
            .build()
        )
    """

    def __init__(self, storage: Storage[J]):
        self._storage = storage
        self._layers: list[Layer] = []
        self._handler: Handler | None = None
        self._options: dict = {}

    def layer(self, layer: Layer | LayerFn) -> "WorkerBuilder[J]":
        """Add a layer. Layers added first run outermost."""
        if not isinstance(layer, Layer):
            layer = from_fn(layer)
        self._layers.append(layer)
        return self

    def layers(self, *layers: Layer | LayerFn) -> "WorkerBuilder[J]":
        for layer in layers:
            self.layer(layer)
        return self

    def handler(self, handler: Handler) -> "WorkerBuilder[J]":
        self._handler = handler
        return self

    def worker_id(self, worker_id: str) -> "WorkerBuilder[J]":
        self._options["worker_id"] = worker_id
        return self

    def poll_interval(self, seconds: float) -> "WorkerBuilder[J]":
        self._options["poll_interval"] = seconds
        return self

    def heartbeat_interval(self, seconds: float) -> "WorkerBuilder[J]":
        self._options["heartbeat_interval"] = seconds
        return self

    def execution_timeout(self, seconds: float) -> "WorkerBuilder[J]":
        self._options["execution_timeout"] = seconds
        return self

    def error_backoff(self, seconds: float) -> "WorkerBuilder[J]":
        self._options["error_backoff"] = seconds
        return self

    def tracker(self, sink: ReportSink) -> "WorkerBuilder[J]":
        self._options["tracker"] = sink
        return self

    def metrics(self, collector: MetricsCollector) -> "WorkerBuilder[J]":
        self._options["metrics"] = collector
        return self

    def build(self) -> Worker[J]:
        """
        Build the worker.

        Raises:
            ValueError: If no handler was given and the job type has no handle method.
        """
        handler = self._handler
        if handler is None:
            if not self._storage.job_type.defines_handle():
                raise ValueError(
                    f"No handler set for {self._storage.job_name} and the job "
                    f"type does not define handle()"
                )
            handler = call_job_handle

        return Worker(
            self._storage,
            handler,
            layers=list(self._layers),
            **self._options,
        )
