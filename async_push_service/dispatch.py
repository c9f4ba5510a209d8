"""Dispatchers that hand queued recipients to the delivery client.

:class:`RateLimitedQueue` is the default: a single background task drains an
in-memory FIFO, keeping a global minimum interval between sends and a
stagger pause between consecutive recipients. :class:`ImmediateDispatcher`
is the degenerate configuration that sends every recipient at once.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import Awaitable, Callable, Deque, Iterable, Optional, Set

from .logger import get_logger
from .models import DeliveryOutcome, NotificationPayload, QueueItem
from .prometheus import PushMetrics

SendCallable = Callable[[str, NotificationPayload], Awaitable[DeliveryOutcome]]


class QueueFullError(RuntimeError):
    """Raised when a bounded queue cannot accept a whole batch."""

    def __init__(self, depth: int, max_size: int, requested: int):
        super().__init__(
            f"Queue full: {depth} pending, {requested} requested, capacity {max_size}"
        )
        self.code = "queue_full"
        self.depth = depth
        self.max_size = max_size
        self.requested = requested


class RateLimitedQueue:
    """Serialize outbound sends through one worker task.

    ``min_interval`` and ``stagger`` are expressed in seconds. The worker is
    started lazily by :meth:`enqueue` and exits as soon as the queue is empty.
    """

    def __init__(
        self,
        send: SendCallable,
        *,
        min_interval: float = 20.0,
        stagger: float = 3.0,
        max_size: Optional[int] = None,
        logger=None,
        metrics: Optional[PushMetrics] = None,
    ):
        self._send = send
        self.min_interval = max(0.0, float(min_interval))
        self.stagger = max(0.0, float(stagger))
        self.max_size = max_size if max_size and max_size > 0 else None
        self.logger = logger or get_logger("queue")
        self.metrics = metrics

        self._items: Deque[QueueItem] = deque()
        self._worker: Optional[asyncio.Task] = None
        self._last_sent: Optional[float] = None
        self._idle = asyncio.Event()
        self._idle.set()

    # ------------------------------------------------------------------ state
    @property
    def depth(self) -> int:
        """Number of items waiting to be sent."""
        return len(self._items)

    @property
    def is_draining(self) -> bool:
        """``True`` while a worker task is active."""
        return self._worker is not None and not self._worker.done()

    @property
    def last_sent(self) -> Optional[float]:
        """Monotonic time at which the last send completed, if any."""
        return self._last_sent

    # -------------------------------------------------------------- producers
    def enqueue(self, tokens: Iterable[str], payload: NotificationPayload) -> int:
        """Append one item per token and make sure the worker is running.

        Never suspends: the call returns before any delivery happens.
        """
        tokens = list(tokens)
        if self.max_size is not None and len(self._items) + len(tokens) > self.max_size:
            raise QueueFullError(len(self._items), self.max_size, len(tokens))
        for token in tokens:
            self._items.append(QueueItem(token, payload))
        self._refresh_gauge()
        if tokens:
            self._ensure_worker()
        return len(tokens)

    def _ensure_worker(self) -> None:
        if self.is_draining:
            return
        self._idle.clear()
        self._worker = asyncio.create_task(self._drain(), name="push-drain-loop")

    # ----------------------------------------------------------------- worker
    def _wait_before_send(self) -> float:
        if self._last_sent is None:
            return 0.0
        return max(0.0, self._last_sent + self.min_interval - time.monotonic())

    async def _drain(self) -> None:
        """Send queued items one by one until the queue is empty."""
        self.logger.debug("Drain loop started with %d item(s)", len(self._items))
        try:
            while self._items:
                item = self._items.popleft()
                self._refresh_gauge()

                wait = self._wait_before_send()
                if wait > 0:
                    self.logger.debug("Waiting %.3fs before next send", wait)
                    await asyncio.sleep(wait)

                try:
                    await self._send(item.token, item.payload)
                except Exception:
                    self.logger.exception("Unhandled error while sending queued push; skipping item")
                self._last_sent = time.monotonic()

                if self.stagger > 0 and self._items:
                    await asyncio.sleep(self.stagger)
        finally:
            self._worker = None
            self._idle.set()
            self.logger.debug("Drain loop finished")

    def _refresh_gauge(self) -> None:
        if self.metrics is not None:
            self.metrics.set_pending(len(self._items))

    # -------------------------------------------------------------- lifecycle
    async def wait_idle(self) -> None:
        """Wait until every queued item has been attempted."""
        await self._idle.wait()

    async def stop(self) -> None:
        """Cancel the worker; items still waiting are discarded."""
        worker = self._worker
        if worker is not None and not worker.done():
            worker.cancel()
            await asyncio.gather(worker, return_exceptions=True)
        if self._items:
            self.logger.warning("Discarding %d queued push(es) on shutdown", len(self._items))
            self._items.clear()
            self._refresh_gauge()
        self._idle.set()


class ImmediateDispatcher:
    """Send every recipient right away, concurrently, without spacing."""

    def __init__(self, send: SendCallable, *, logger=None, metrics: Optional[PushMetrics] = None):
        self._send = send
        self.logger = logger or get_logger("immediate")
        self.metrics = metrics
        self._tasks: Set[asyncio.Task] = set()

    @property
    def depth(self) -> int:
        """Number of sends currently in flight."""
        return len(self._tasks)

    @property
    def is_draining(self) -> bool:
        return bool(self._tasks)

    def enqueue(self, tokens: Iterable[str], payload: NotificationPayload) -> int:
        """Start one send task per token and return immediately."""
        count = 0
        for token in tokens:
            task = asyncio.create_task(self._send_one(token, payload), name="push-immediate-send")
            self._tasks.add(task)
            task.add_done_callback(self._forget)
            count += 1
        self._refresh_gauge()
        return count

    async def _send_one(self, token: str, payload: NotificationPayload) -> None:
        try:
            await self._send(token, payload)
        except Exception:
            self.logger.exception("Unhandled error while sending immediate push")

    def _forget(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        self._refresh_gauge()

    def _refresh_gauge(self) -> None:
        if self.metrics is not None:
            self.metrics.set_pending(len(self._tasks))

    async def wait_idle(self) -> None:
        """Wait until every in-flight send has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def stop(self) -> None:
        """Cancel in-flight sends."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._refresh_gauge()
