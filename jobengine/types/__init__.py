"""
Type definitions for the job engine.
Contains the job model, the persisted envelope and tracker events.
"""

from jobengine.types.events import JobReport
from jobengine.types.job import (
    Codec,
    Envelope,
    Handler,
    Job,
    JsonCodec,
    utcnow,
)

__all__ = [
    # Job types
    "Job",
    "Handler",
    "Codec",
    "JsonCodec",
    "Envelope",
    "utcnow",
    # Event types
    "JobReport",
]
