"""Handler contract served by a request queue."""

from abc import ABC, abstractmethod
from typing import Generic, TypeVar

TRequest = TypeVar("TRequest")
TResponse = TypeVar("TResponse")


class RequestHandler(ABC, Generic[TRequest, TResponse]):
    """Stateful, synchronous request processor.

    A handler is owned by exactly one queue worker and is never called
    concurrently, so implementations need no locking. Raising from ``handle``
    terminates the worker that owns the handler.
    """

    @abstractmethod
    def handle(self, request: TRequest) -> TResponse:
        """Process one request and return its response."""
        pass
