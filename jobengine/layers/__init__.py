"""
Execution layers.
Composable wrappers adding cross-cutting behavior around job execution.
"""

from jobengine.layers.base import (
    FunctionLayer,
    JobRequest,
    Layer,
    LayerFn,
    Service,
    compose,
    from_fn,
)
from jobengine.layers.extension import AddExtensionLayer
from jobengine.layers.rate_limit import RateLimiter, RateLimitLayer
from jobengine.layers.trace import TraceLayer

__all__ = [
    "Layer",
    "FunctionLayer",
    "LayerFn",
    "JobRequest",
    "Service",
    "compose",
    "from_fn",
    "RateLimitLayer",
    "RateLimiter",
    "TraceLayer",
    "AddExtensionLayer",
]
