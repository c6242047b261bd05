"""
Throttle Gateway
Rate-limits and queues outbound calls so bursts of tracking and verification
traffic never trip host-level request-flooding protection
"""

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Dict, Iterable, Optional, Set

import structlog

from storefront.config import settings

logger = structlog.get_logger(__name__)

TaskFn = Callable[[], Awaitable[Any]]


class FetchTimeoutError(TimeoutError):
    """Raised when a throttled fetch exceeds its timeout and is aborted."""


@dataclass
class ThrottleTask:
    """A call waiting for the gateway to have capacity."""

    request_fn: TaskFn
    key: str
    future: asyncio.Future
    timestamp: float = field(default_factory=time.monotonic)


class ThrottleGateway:
    """
    Bounds rate and concurrency of outbound calls.

    Calls run immediately while fewer than ``max_concurrent`` are in flight and
    at least ``min_interval`` has passed since the last execution; otherwise
    they wait in a FIFO queue. New arrivals never overtake queued calls.
    Failures matching ``suppressed_errors`` resolve the caller with ``None``
    instead of raising.

    Usage:
        gateway = ThrottleGateway()
        result = await gateway.submit(lambda: client.get(url), key="fetch:/x")
    """

    def __init__(
        self,
        min_interval: float = 0.25,
        max_concurrent: int = 5,
        drain_delay: float = 0.05,
        suppressed_errors: Optional[Iterable[str]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.min_interval = min_interval
        self.max_concurrent = max_concurrent
        self.drain_delay = drain_delay
        self.suppressed_errors = [
            pattern.lower() for pattern in (suppressed_errors or settings.throttle_suppressed_errors)
        ]
        self.clock = clock

        self.active_requests = 0
        self.last_request_time: Optional[float] = None
        self._queue: Deque[ThrottleTask] = deque()
        self._timers: Set[asyncio.TimerHandle] = set()
        self._running: Set[asyncio.Task] = set()
        self._batches: Dict[str, asyncio.TimerHandle] = {}
        self.logger = logger.bind(service="throttle_gateway")

    async def submit(self, task_fn: TaskFn, key: str = "default") -> Any:
        """
        Run ``task_fn`` once the gateway has capacity.

        Returns:
            The task's result, or None if it failed with a suppressible error

        Raises:
            Any non-suppressible exception raised by ``task_fn``
        """
        loop = asyncio.get_running_loop()
        future = loop.create_future()

        if (
            self._queue
            or self._since_last_request() < self.min_interval
            or self.active_requests >= self.max_concurrent
        ):
            self._queue.append(ThrottleTask(task_fn, key, future, self.clock()))
            self._call_later(self.min_interval, self._process_queue)
        else:
            self._execute(task_fn, key, future)

        return await future

    def _since_last_request(self) -> float:
        if self.last_request_time is None:
            return float("inf")
        return self.clock() - self.last_request_time

    def _execute(self, task_fn: TaskFn, key: str, future: asyncio.Future) -> None:
        self.active_requests += 1
        self.last_request_time = self.clock()
        task = asyncio.ensure_future(self._run(task_fn, key, future))
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    async def _run(self, task_fn: TaskFn, key: str, future: asyncio.Future) -> None:
        try:
            result = await task_fn()
        except Exception as e:
            if self.should_suppress(e):
                self.logger.warning("throttled_request_suppressed", key=key, error=str(e) or type(e).__name__)
                _settle(future, result=None)
            else:
                _settle(future, error=e)
        else:
            _settle(future, result=result)
        finally:
            if not future.done():
                future.cancel()
            self.active_requests = max(0, self.active_requests - 1)
            self._call_later(self.drain_delay, self._process_queue)

    def _process_queue(self) -> None:
        if not self._queue or self.active_requests >= self.max_concurrent:
            return

        elapsed = self._since_last_request()
        if elapsed >= self.min_interval:
            task = self._queue.popleft()
            if task.future.done():
                # Caller gave up while queued
                self._call_later(0, self._process_queue)
                return
            self._execute(task.request_fn, task.key, task.future)
        else:
            self._call_later(self.min_interval - elapsed, self._process_queue)

    def _call_later(self, delay: float, callback: Callable[[], None]) -> None:
        loop = asyncio.get_running_loop()
        handle = None

        def fire():
            self._timers.discard(handle)
            callback()

        handle = loop.call_later(delay, fire)
        self._timers.add(handle)

    def should_suppress(self, error: BaseException) -> bool:
        """Check whether an error is a known non-actionable transport/tracker failure."""
        message = f"{type(error).__name__}: {error}".lower()
        return any(pattern in message for pattern in self.suppressed_errors)

    def batch(self, task_fn: TaskFn, batch_key: str, delay: Optional[float] = None) -> None:
        """
        Debounce submissions sharing ``batch_key``.

        Only the last call within ``delay`` (default: the configured batch
        delay) runs; earlier ones are superseded.
        Failures are logged and never raised.
        """
        if delay is None:
            delay = settings.throttle_batch_delay_seconds
        loop = asyncio.get_running_loop()
        pending = self._batches.pop(batch_key, None)
        if pending is not None:
            pending.cancel()
            self._timers.discard(pending)

        handle = None

        def fire():
            self._timers.discard(handle)
            if self._batches.get(batch_key) is handle:
                del self._batches[batch_key]
            task = asyncio.ensure_future(self._run_batched(task_fn, batch_key))
            self._running.add(task)
            task.add_done_callback(self._running.discard)

        handle = loop.call_later(delay, fire)
        self._timers.add(handle)
        self._batches[batch_key] = handle

    async def _run_batched(self, task_fn: TaskFn, batch_key: str) -> None:
        try:
            await self.submit(task_fn, batch_key)
        except Exception as e:
            self.logger.warning("batched_request_failed", batch_key=batch_key, error=str(e))

    def reset(self) -> None:
        """Clear all timers, queued tasks and counters. Test isolation only."""
        for handle in list(self._timers):
            handle.cancel()
        self._timers.clear()
        self._batches.clear()

        while self._queue:
            task = self._queue.popleft()
            if not task.future.done():
                task.future.cancel()

        self.active_requests = 0
        self.last_request_time = None

    def get_status(self) -> dict:
        since = self._since_last_request()
        return {
            "active_requests": self.active_requests,
            "queued_requests": len(self._queue),
            "pending_batches": len(self._batches),
            "last_request_time": self.last_request_time,
            "time_since_last_request": None if since == float("inf") else since,
        }


def _settle(future: asyncio.Future, result: Any = None, error: Optional[BaseException] = None) -> None:
    if future.done():
        return
    if error is not None:
        future.set_exception(error)
    else:
        future.set_result(result)


async def throttled_fetch(
    client,
    method: str,
    url: str,
    gateway: Optional[ThrottleGateway] = None,
    timeout: Optional[float] = None,
    **kwargs,
):
    """
    Issue an httpx request through the gateway with a hard timeout.

    The underlying request is cancelled when ``timeout`` elapses and a
    FetchTimeoutError is raised in its place; the gateway then suppresses it
    like any other timeout, so callers may receive ``None``.

    Args:
        client: httpx.AsyncClient
        method: HTTP method
        url: Request URL
        gateway: Gateway to route through (default: process-wide instance)
        timeout: Seconds before the request is aborted

    Returns:
        httpx.Response, or None if the failure was suppressed
    """
    gateway = gateway or throttle_gateway
    limit = timeout if timeout is not None else settings.verify_timeout_seconds

    async def request():
        try:
            return await asyncio.wait_for(client.request(method, url, **kwargs), timeout=limit)
        except asyncio.TimeoutError:
            raise FetchTimeoutError(f"TimeoutError: {method} {url} aborted after {limit}s")

    return await gateway.submit(request, f"fetch:{url}")


throttle_gateway = ThrottleGateway(
    min_interval=settings.throttle_min_interval_seconds,
    max_concurrent=settings.throttle_max_concurrent,
    drain_delay=settings.throttle_drain_delay_seconds,
    suppressed_errors=settings.throttle_suppressed_errors,
)
