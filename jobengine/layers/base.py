"""
Layer chain composition.

A layer wraps the execution service with pre/post behavior, the same way an
HTTP middleware wraps ``call_next``. Layers are composed once, when a worker
is built, into a single callable; the first declared layer is outermost.
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

from jobengine.constants import Outcome
from jobengine.context import JobContext
from jobengine.types.job import Envelope


@dataclass
class JobRequest:
    """Everything one execution needs: the claimed envelope, the job and its context."""

    envelope: Envelope
    job: Any
    context: JobContext


# Type alias for the execution signature
Service = Callable[[JobRequest], Awaitable[Outcome]]

# Type alias for function layers
LayerFn = Callable[[JobRequest, Service], Awaitable[Outcome]]


class Layer(ABC):
    """
    Base class for execution layers.

    Subclasses implement ``__call__`` and must await ``call_next`` exactly
    once unless they deliberately short-circuit with their own outcome.
    """

    @abstractmethod
    async def __call__(self, request: JobRequest, call_next: Service) -> Outcome:
        """
        Run the layer around the inner service.

        Args:
            request: The execution request.
            call_next: The next stage of the chain.

        Returns:
            The execution outcome.
        """

    def wrap(self, inner: Service) -> Service:
        """Bind this layer around ``inner``."""

        async def service(request: JobRequest) -> Outcome:
            return await self(request, inner)

        return service


class FunctionLayer(Layer):
    """Layer built from a plain ``async (request, call_next)`` function."""

    def __init__(self, fn: LayerFn):
        self._fn = fn

    async def __call__(self, request: JobRequest, call_next: Service) -> Outcome:
        return await self._fn(request, call_next)

    def __repr__(self) -> str:
        return f"FunctionLayer({getattr(self._fn, '__name__', self._fn)!r})"


def from_fn(fn: LayerFn) -> Layer:
    """
    Create a layer from a function.

    Example:
        @from_fn
        async def audit(request: JobRequest, call_next: Service) -> Outcome:
            outcome = await call_next(request)
            ...
            return outcome
    """
    return FunctionLayer(fn)


def compose(layers: Sequence[Layer], service: Service) -> Service:
    """
    Compose layers around a service.

    ``compose([a, b, c], svc)`` is ``a(b(c(svc)))``: ``a`` sees the request
    first and the outcome last.
    """
    for layer in reversed(layers):
        service = layer.wrap(service)
    return service
