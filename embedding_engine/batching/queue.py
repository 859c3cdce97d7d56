"""Request queue with a stateful handler on a dedicated worker.

A ``Queue`` takes ownership of a ``RequestHandler`` and moves it onto its
own thread, which runs a private asyncio loop consuming an unbounded command
channel. Callers on any thread append entries and get a future back; the
worker handles entries one at a time in submission order. That ordering is
what lets a non-thread-safe model be shared without locks.

Lifecycle
- Running: entries are handled and replies delivered exactly once
- Stopped: reached after ``Stop`` (all earlier entries handled first) or
  after the handler raises. A failing handler is fatal to the worker: the
  failing entry and everything still queued receive ``DeliveryError``.

The worker thread only references the worker side (loop, channel, handler).
Dropping the last reference to a ``Queue`` sends ``Stop``, so an abandoned
queue releases its thread and model once the entries already sent are done.
"""

import asyncio
import threading
import time
import uuid
import weakref
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any, Generic, List, Optional

import structlog

from ..runtime.metrics import MetricsCollector
from ..errors import DeliveryError
from ..handlers.base import RequestHandler, TRequest, TResponse

logger = structlog.get_logger("embedding_engine.queue")


@dataclass
class QueueEntry(Generic[TRequest, TResponse]):
    """One request travelling through a queue with its single-use reply."""
    request: TRequest
    reply: "Future[TResponse]" = field(default_factory=Future)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    enqueue_time: float = field(default_factory=time.monotonic)


class _Stop:
    """Command telling the worker to exit once earlier entries are done."""

    def __repr__(self) -> str:
        return "Stop"


STOP = _Stop()


class _Worker(Generic[TRequest, TResponse]):
    """Consumer side of a queue: event loop, command channel and state.

    Owned by the worker thread. It never references the ``Queue`` handle.
    """

    def __init__(self, name: str, metrics: Optional[MetricsCollector]):
        self.name = name
        self.metrics = metrics
        self.error: Optional[BaseException] = None
        self.closed = False
        self.pending = 0

        self.loop = asyncio.new_event_loop()
        self.channel: "asyncio.Queue[Any]" = asyncio.Queue()
        self.lock = threading.Lock()

    def send(self, command: Any) -> None:
        with self.lock:
            if self.closed:
                raise DeliveryError(f"Queue {self.name} is not running")
            if command is not STOP:
                self.pending += 1
            self.loop.call_soon_threadsafe(self.channel.put_nowait, command)
            self._report_depth()

    def stop(self) -> None:
        """Send ``Stop`` unless the worker already closed."""
        try:
            self.send(STOP)
        except DeliveryError:
            logger.debug("Queue already stopped", queue=self.name)

    def run(self, handler: RequestHandler[TRequest, TResponse]) -> None:
        asyncio.set_event_loop(self.loop)
        try:
            self.loop.run_until_complete(self._queue_task(handler))
        finally:
            self.loop.close()

    async def _queue_task(self, handler: RequestHandler[TRequest, TResponse]) -> None:
        try:
            while True:
                command = await self.channel.get()

                if command is STOP:
                    logger.info("Stopping queue task", queue=self.name)
                    break

                entry: QueueEntry[TRequest, TResponse] = command
                with self.lock:
                    self.pending -= 1
                    self._report_depth()

                waited = time.monotonic() - entry.enqueue_time
                logger.debug(
                    "Processing task",
                    queue=self.name,
                    task_id=entry.id,
                    waited_ms=waited * 1000,
                )

                try:
                    response = handler.handle(entry.request)
                except Exception as e:
                    self.error = e
                    logger.exception(
                        "Handler failed, stopping queue task",
                        queue=self.name,
                        task_id=entry.id,
                        error=str(e),
                    )
                    if self.metrics:
                        self.metrics.record_worker_failure(self.name)
                    self._drop(entry, e)
                    break

                self._deliver(entry, response, waited)
        finally:
            await self._close()

    async def _close(self) -> None:
        with self.lock:
            self.closed = True
        # Let ``put_nowait`` callbacks scheduled before closing land first
        await asyncio.sleep(0)

        dropped: List[QueueEntry[TRequest, TResponse]] = []
        while not self.channel.empty():
            command = self.channel.get_nowait()
            if command is not STOP:
                dropped.append(command)

        for entry in dropped:
            self._drop(entry, self.error)
        with self.lock:
            self.pending = 0
            self._report_depth()

        if dropped:
            logger.warning("Queue closed with undelivered entries", queue=self.name, count=len(dropped))
        logger.info("Queue worker stopped", queue=self.name, failed=self.error is not None)

    def _deliver(self, entry: QueueEntry[TRequest, TResponse], response: TResponse, waited: float) -> None:
        if self._claim(entry):
            entry.reply.set_result(response)
            logger.debug("Successfully sent response for task", queue=self.name, task_id=entry.id)
            outcome = "delivered"
        else:
            logger.error("Failed to send response for task", queue=self.name, task_id=entry.id)
            outcome = "abandoned"
        if self.metrics:
            self.metrics.record_queue_entry(self.name, outcome, waited)

    def _drop(self, entry: QueueEntry[TRequest, TResponse], cause: Optional[BaseException]) -> None:
        if self._claim(entry):
            error = DeliveryError(f"Queue {self.name} stopped before task {entry.id} was answered")
            error.__cause__ = cause
            entry.reply.set_exception(error)
        if self.metrics:
            self.metrics.record_queue_entry(self.name, "dropped")

    @staticmethod
    def _claim(entry: QueueEntry[TRequest, TResponse]) -> bool:
        """Move the reply to running; ``False`` if the caller abandoned it."""
        try:
            return entry.reply.set_running_or_notify_cancel()
        except RuntimeError:
            # Already resolved by someone other than this worker
            return False

    def _report_depth(self) -> None:
        # Called with ``lock`` held so the gauge never lags a newer count
        if self.metrics:
            self.metrics.set_queue_depth(self.name, self.pending)


class Queue(Generic[TRequest, TResponse]):
    """Serializes every call to ``handler`` through one worker thread.

    Parameters
    - handler: Handler to own; do not touch it after passing it in
    - name: Worker thread name and log/metrics label
    - metrics: Optional collector for queue depth and entry outcomes
    """

    def __init__(
        self,
        handler: RequestHandler[TRequest, TResponse],
        name: Optional[str] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.name = name or f"queue-{uuid.uuid4()}"
        self.metrics = metrics

        self._worker: _Worker[TRequest, TResponse] = _Worker(self.name, metrics)
        self._thread = threading.Thread(
            target=self._worker.run, args=(handler,), name=self.name, daemon=True
        )
        self._thread.start()
        # Dropping the handle stops the worker like an explicit shutdown
        self._finalizer = weakref.finalize(self, self._worker.stop)
        logger.info("Queue worker started", queue=self.name)

    def __repr__(self) -> str:
        state = "running" if self.is_running else "stopped"
        return f"<Queue {self.name} {state} pending={self.pending}>"

    def __enter__(self) -> "Queue[TRequest, TResponse]":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.shutdown(wait=True)

    @property
    def is_running(self) -> bool:
        """``True`` until the worker has stopped or terminated."""
        return not self._worker.closed and self._thread.is_alive()

    @property
    def pending(self) -> int:
        """Entries appended but not yet picked up by the worker."""
        return self._worker.pending

    @property
    def error(self) -> Optional[BaseException]:
        """The handler exception that terminated the worker, if any."""
        return self._worker.error

    def submit(self, request: TRequest) -> "Future[TResponse]":
        """Append ``request`` and return the future its reply will land in.

        Raises ``DeliveryError`` when the worker is no longer running.
        """
        entry: QueueEntry[TRequest, TResponse] = QueueEntry(request)
        self.append(entry)
        return entry.reply

    async def submit_async(self, request: TRequest) -> TResponse:
        """Append ``request`` and await the reply from an asyncio caller.

        Cancelling the awaiting task abandons the reply only; an entry the
        worker already started is still computed.
        """
        return await asyncio.wrap_future(self.submit(request))

    def append(self, entry: QueueEntry[TRequest, TResponse]) -> None:
        """Send an ``Append`` command for a caller-built entry."""
        self._worker.send(entry)

    def shutdown(self, wait: bool = False, timeout: Optional[float] = None) -> None:
        """Send ``Stop``. Entries appended earlier are still handled.

        Calling it on a queue that already stopped is a no-op.
        """
        self._finalizer.detach()
        self._worker.stop()
        if wait:
            self.join(timeout)

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the worker thread to exit. Returns ``True`` if it did."""
        self._thread.join(timeout)
        return not self._thread.is_alive()
