"""
Background dispatcher for LTTB downsampling.

Runs ``lttb_downsample`` on a dedicated worker thread so large series do not
block the event loop serving chart requests. Concurrent requests are
correlated by request id: each call registers a pending future, the worker
posts a ``SampleResult`` back to the caller's loop, and the future for that
id is resolved.

Usage:
    dispatcher = LttbDispatcher(request_timeout=30.0)
    sampled = await dispatcher.sample_async(points, 1000, "air_temperature")
    dispatcher.close()
"""

import asyncio
import math
import queue
import random
import string
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from ..shared.decimation import lttb_downsample
from ..shared.logger import get_logger
from .messages import SampleRequest, SampleResult

logger = get_logger(__name__)

DEFAULT_REQUEST_TIMEOUT = 30.0

_ID_ALPHABET = string.digits + string.ascii_lowercase


class SamplingTimeoutError(TimeoutError):
    """Raised when the worker did not answer a request in time."""

    def __init__(self, request_id: str, timeout: float):
        super().__init__(f"Sampling request {request_id} timed out after {timeout:g}s")
        self.request_id = request_id
        self.timeout = timeout


@dataclass
class _PendingRequest:
    """Correlation map entry for one in-flight request."""

    future: asyncio.Future
    loop: asyncio.AbstractEventLoop
    timeout_handle: Optional[asyncio.TimerHandle] = None


class LttbDispatcher:
    """
    Owns one worker thread and one correlation map.

    The worker is started at construction (unless ``autostart`` is False)
    and stopped by ``close()``. Without a running worker, requests are
    sampled inline in the caller's thread.
    """

    def __init__(
        self,
        request_timeout: Optional[float] = DEFAULT_REQUEST_TIMEOUT,
        autostart: bool = True,
    ):
        """Initialize the dispatcher.

        Args:
            request_timeout: Seconds before a pending request fails with
                SamplingTimeoutError. None waits forever.
            autostart: Start the worker thread immediately.
        """
        self.request_timeout = request_timeout
        self._pending: Dict[str, _PendingRequest] = {}
        self._lock = threading.Lock()
        self._requests: "queue.Queue[Optional[SampleRequest]]" = queue.Queue()
        self._worker: Optional[threading.Thread] = None
        self._closed = False

        if autostart:
            self.start()

    # ============= Lifecycle =============

    def start(self) -> None:
        """Start the worker thread if it is not already running."""
        if self._closed:
            raise RuntimeError("LttbDispatcher has been closed")
        if self._worker is not None and self._worker.is_alive():
            return

        self._worker = threading.Thread(
            target=self._run_worker,
            name="lttb-worker",
            daemon=True,
        )
        self._worker.start()
        logger.info("LTTB worker started")

    def close(self, wait: bool = True, timeout: Optional[float] = 5.0) -> None:
        """Stop the worker and abandon pending requests.

        Queued requests are discarded and their futures cancelled; results
        still produced by the worker are dropped. Calling close() twice is
        harmless.

        Args:
            wait: Join the worker thread before returning.
            timeout: Maximum seconds to wait for the join.
        """
        if self._closed:
            return
        self._closed = True

        while True:
            try:
                self._requests.get_nowait()
            except queue.Empty:
                break
        self._requests.put(None)

        worker = self._worker
        if wait and worker is not None and worker is not threading.current_thread():
            worker.join(timeout)

        with self._lock:
            abandoned = list(self._pending.values())
            self._pending.clear()

        try:
            running_loop = asyncio.get_running_loop()
        except RuntimeError:
            running_loop = None

        for pending in abandoned:
            if pending.loop is running_loop:
                self._abandon(pending)
            else:
                try:
                    pending.loop.call_soon_threadsafe(self._abandon, pending)
                except RuntimeError:
                    pass  # loop already closed, nothing left to wake

        logger.info("LTTB worker stopped (%d pending requests abandoned)", len(abandoned))

    def __enter__(self) -> "LttbDispatcher":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    async def __aenter__(self) -> "LttbDispatcher":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ============= Status =============

    @property
    def worker_alive(self) -> bool:
        """True when requests are handed to the worker thread."""
        return not self._closed and self._worker is not None and self._worker.is_alive()

    @property
    def is_processing(self) -> bool:
        """True while at least one request is waiting for its result."""
        with self._lock:
            return bool(self._pending)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    # ============= Submission =============

    def sample_async(
        self,
        data: Sequence[Any],
        max_points: Optional[float],
        value_key: str,
    ) -> asyncio.Future:
        """Downsample ``data`` to ``max_points`` without blocking the loop.

        Must be called from a running event loop. Returns immediately with a
        future resolving to the same list ``lttb_downsample`` would return.

        Args:
            data: Observations in ascending timestamp order.
            max_points: Point budget. None or ``math.inf`` means unbounded.
            value_key: Field holding the value to downsample.
        """
        loop = asyncio.get_running_loop()
        future = loop.create_future()

        if max_points is None or max_points == math.inf or len(data) <= max_points:
            future.set_result(data)
            return future

        threshold = int(max_points)

        if not self.worker_alive:
            logger.warning(
                "LTTB worker not available, sampling %d points inline", len(data)
            )
            future.set_result(lttb_downsample(data, threshold, value_key))
            return future

        pending = _PendingRequest(future=future, loop=loop)
        with self._lock:
            request_id = self._new_request_id()
            self._pending[request_id] = pending

        if self.request_timeout is not None:
            pending.timeout_handle = loop.call_later(
                self.request_timeout, self._expire, request_id
            )
        def on_done(f: asyncio.Future) -> None:
            # Callers may cancel their own future; drop the entry with it
            if f.cancelled():
                self._discard(request_id)

        future.add_done_callback(on_done)

        self._requests.put(
            SampleRequest(
                request_id=request_id,
                dataset=data,
                target_point_count=threshold,
                value_key=value_key,
            )
        )
        return future

    def _new_request_id(self) -> str:
        """Return an id not used by any pending request. Caller holds the lock."""
        while True:
            suffix = "".join(random.choices(_ID_ALPHABET, k=9))
            request_id = f"{time.time_ns()}-{suffix}"
            if request_id not in self._pending:
                return request_id

    # ============= Worker side =============

    def _run_worker(self) -> None:
        while True:
            request = self._requests.get()
            if request is None:
                break
            self._post_result(self._process(request))

    def _process(self, request: SampleRequest) -> SampleResult:
        try:
            sampled = lttb_downsample(
                request.dataset, request.target_point_count, request.value_key
            )
        except Exception as e:
            logger.error("LTTB worker failed on request %s: %s", request.request_id, e)
            return SampleResult(
                request_id=request.request_id,
                sampled_dataset=[],
                original_length=len(request.dataset),
                sampled_length=0,
                error=e,
            )

        return SampleResult(
            request_id=request.request_id,
            sampled_dataset=sampled,
            original_length=len(request.dataset),
            sampled_length=len(sampled),
        )

    def _post_result(self, result: SampleResult) -> None:
        """Hand a result from the worker thread to the caller's loop."""
        with self._lock:
            pending = self._pending.get(result.request_id)

        if pending is None:
            logger.debug("Dropping late result for request %s", result.request_id)
            return

        try:
            pending.loop.call_soon_threadsafe(self._deliver, result)
        except RuntimeError:
            logger.warning(
                "Event loop closed before request %s was delivered", result.request_id
            )
            self._discard(result.request_id)

    # ============= Loop side =============

    def _deliver(self, result: SampleResult) -> None:
        pending = self._discard(result.request_id)
        if pending is None or pending.future.done():
            return

        if result.ok:
            logger.debug("LTTB result delivered: %s", result.to_dict())
            pending.future.set_result(result.sampled_dataset)
        else:
            logger.debug("LTTB result failed: %s", result.to_dict())
            pending.future.set_exception(result.error)

    def _expire(self, request_id: str) -> None:
        pending = self._discard(request_id)
        if pending is None or pending.future.done():
            return

        logger.warning(
            "Sampling request %s timed out after %gs", request_id, self.request_timeout
        )
        pending.future.set_exception(SamplingTimeoutError(request_id, self.request_timeout))

    def _discard(self, request_id: str) -> Optional[_PendingRequest]:
        """Remove a correlation map entry and disarm its timer."""
        with self._lock:
            pending = self._pending.pop(request_id, None)
        if pending is not None and pending.timeout_handle is not None:
            pending.timeout_handle.cancel()
        return pending

    @staticmethod
    def _abandon(pending: _PendingRequest) -> None:
        if pending.timeout_handle is not None:
            pending.timeout_handle.cancel()
        if not pending.future.done():
            pending.future.cancel()
