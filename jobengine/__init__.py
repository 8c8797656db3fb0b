"""
Job Engine

A background job processing library: typed jobs persisted in pluggable
storages, executed by workers through composable layers, with retries,
scheduling, progress tracking and graceful shutdown.
"""

__version__ = "1.0.0"

from jobengine.backoff import BackoffPolicy, ConstantBackoff, ExponentialBackoff
from jobengine.constants import JobState, Outcome, ReportKind
from jobengine.context import JobContext
from jobengine.exceptions import (
    ClaimError,
    ExecutionTimeout,
    HandlerFault,
    JobDecodeError,
    JobEngineError,
    StaleTransitionError,
    StorageInitError,
)
from jobengine.layers import (
    AddExtensionLayer,
    JobRequest,
    Layer,
    RateLimitLayer,
    TraceLayer,
    from_fn,
)
from jobengine.monitor import Monitor
from jobengine.storage import MemoryStorage, Storage
from jobengine.tracker import ChannelSink, JobTracker, ReportConsumer
from jobengine.types import Envelope, Job, JobReport, JsonCodec
from jobengine.worker import Worker, WorkerBuilder

__all__ = [
    "__version__",
    # Jobs
    "Job",
    "Envelope",
    "JsonCodec",
    "JobState",
    "Outcome",
    "JobContext",
    # Storage
    "Storage",
    "MemoryStorage",
    "BackoffPolicy",
    "ExponentialBackoff",
    "ConstantBackoff",
    # Execution
    "Worker",
    "WorkerBuilder",
    "Monitor",
    "Layer",
    "JobRequest",
    "from_fn",
    "RateLimitLayer",
    "TraceLayer",
    "AddExtensionLayer",
    # Tracking
    "ChannelSink",
    "JobTracker",
    "ReportConsumer",
    "JobReport",
    "ReportKind",
    # Errors
    "JobEngineError",
    "StorageInitError",
    "ClaimError",
    "StaleTransitionError",
    "HandlerFault",
    "ExecutionTimeout",
    "JobDecodeError",
]
