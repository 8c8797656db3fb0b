"""
Prometheus metrics collection.
"""

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
)

from jobengine.constants import (
    METRIC_ACTIVE_WORKERS,
    METRIC_JOB_DURATION,
    METRIC_JOBS_CLAIMED,
    METRIC_JOBS_ENQUEUED,
    METRIC_JOBS_FINISHED,
    METRIC_RATE_LIMIT_WAIT,
    METRIC_STORAGE_ERRORS,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the job engine.

    Collects metrics for:
    - Job claims and finished executions
    - Job execution duration
    - Storage errors by operation
    - Rate limit waits
    - Running workers
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.jobs_enqueued = Counter(
            METRIC_JOBS_ENQUEUED,
            "Total number of jobs enqueued",
            ["job_name"],
            registry=self._registry,
        )

        self.jobs_claimed = Counter(
            METRIC_JOBS_CLAIMED,
            "Total number of jobs claimed",
            ["worker_id"],
            registry=self._registry,
        )

        # Finished executions by resulting envelope state
        self.jobs_finished = Counter(
            METRIC_JOBS_FINISHED,
            "Total number of finished job executions",
            ["job_name", "state"],
            registry=self._registry,
        )

        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Job execution duration in seconds",
            ["job_name", "outcome"],
            buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
            registry=self._registry,
        )

        self.storage_errors = Counter(
            METRIC_STORAGE_ERRORS,
            "Total number of failed storage operations",
            ["operation"],
            registry=self._registry,
        )

        self.rate_limit_wait = Histogram(
            METRIC_RATE_LIMIT_WAIT,
            "Time spent waiting for a rate limit permit in seconds",
            buckets=(0.001, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0),
            registry=self._registry,
        )

        self.active_workers = Gauge(
            METRIC_ACTIVE_WORKERS,
            "Number of running workers",
            registry=self._registry,
        )

    def record_job_enqueued(self, job_name: str) -> None:
        """Record a job submission."""
        self.jobs_enqueued.labels(job_name=job_name).inc()

    def record_job_claimed(self, worker_id: str) -> None:
        """Record a successful claim."""
        self.jobs_claimed.labels(worker_id=worker_id).inc()

    def record_job_finished(
        self,
        job_name: str,
        outcome: str,
        state: str,
        duration_seconds: float,
    ) -> None:
        """Record a finished execution."""
        self.jobs_finished.labels(job_name=job_name, state=state).inc()
        self.job_duration.labels(job_name=job_name, outcome=outcome).observe(
            duration_seconds
        )

    def record_storage_error(self, operation: str) -> None:
        """Record a failed storage operation."""
        self.storage_errors.labels(operation=operation).inc()

    def record_rate_limit_wait(self, seconds: float) -> None:
        """Record time spent waiting for a permit."""
        self.rate_limit_wait.observe(seconds)


def setup_metrics() -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
