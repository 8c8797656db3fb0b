"""
Worker module.
Contains the job worker loop and its builder.
"""

from jobengine.worker.builder import WorkerBuilder, call_job_handle
from jobengine.worker.worker import Worker, default_worker_id

__all__ = ["Worker", "WorkerBuilder", "call_job_handle", "default_worker_id"]
