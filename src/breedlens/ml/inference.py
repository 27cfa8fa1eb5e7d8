"""Inference concurrency layer.

Architecture:
    event loop (owns the screen) -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> ONNX inference

Blocking work runs on the pool; its result comes back to the caller's loop as an
awaited future, so callers mutate their own state only on that loop. Requests
beyond the semaphore limit queue with a 5s timeout, then fail with TimeoutError.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

    from breedlens.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

SEMAPHORE_TIMEOUT_SECONDS: float = 5.0


class InferencePool:
    """Bounded worker pool for blocking classification calls."""

    def __init__(self, settings: Settings, timeout: float = SEMAPHORE_TIMEOUT_SECONDS) -> None:
        self._semaphore = asyncio.Semaphore(settings.max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="onnx-inference",
        )
        self._timeout = timeout
        self._active_count = 0
        self._queue_depth = 0
        self._completed_count = 0
        self._counter_lock = threading.Lock()

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Run a synchronous function on the pool and await its result.

        Raises:
            TimeoutError: If no worker slot frees up within the timeout.
        """
        with self._counter_lock:
            self._queue_depth += 1
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=self._timeout)
        except TimeoutError:
            logger.warning("Inference pool saturated, request rejected after %.1fs", self._timeout)
            raise
        finally:
            with self._counter_lock:
                self._queue_depth -= 1

        with self._counter_lock:
            self._active_count += 1
        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, func, *args)
        finally:
            self._semaphore.release()
            with self._counter_lock:
                self._active_count -= 1
                self._completed_count += 1

    @property
    def active_count(self) -> int:
        """Number of currently running inference tasks."""
        with self._counter_lock:
            return self._active_count

    @property
    def queue_depth(self) -> int:
        """Number of requests waiting for a worker slot."""
        with self._counter_lock:
            return self._queue_depth

    @property
    def completed_count(self) -> int:
        """Number of tasks that have finished, successfully or not."""
        with self._counter_lock:
            return self._completed_count

    def shutdown(self) -> None:
        """Shut down the thread pool executor."""
        self._executor.shutdown(wait=True)
