"""
Layer inserting shared data into every execution context.
"""

from typing import Any

from jobengine.constants import Outcome
from jobengine.layers.base import JobRequest, Layer, Service


class AddExtensionLayer(Layer):
    """
    Insert a value into each context before the handler runs.

    Contexts are rebuilt on every attempt, so data a handler needs on every
    attempt (clients, configuration) is loaded through this layer.
    """

    def __init__(self, value: Any):
        self.value = value

    async def __call__(self, request: JobRequest, call_next: Service) -> Outcome:
        request.context.insert(self.value)
        return await call_next(request)

    def __repr__(self) -> str:
        return f"AddExtensionLayer({type(self.value).__name__})"
