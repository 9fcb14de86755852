"""
Per-key de-duplication of in-flight work ("single flight").

``InflightGroup.run(key, fn)`` guarantees that at most one call
of *fn* is outstanding per key.  The first caller submits the
work to a background executor; every caller for the same key,
including the first, then waits on the same ``Future``.  Late
arrivals attach to the pending result instead of starting their
own, and the key is cleared once the result lands (success or
failure) so the next genuinely new request starts fresh work.

Because the work runs on the group's executor rather than on the
caller's thread, a caller that gives up (``timeout``) does not
cancel it: the upload or token refresh finishes and publishes its
result for whoever is still waiting.  Errors are never absorbed;
each waiter receives the exception raised by the shared call.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InflightGroup(Generic[T]):
    """Map from key to a shared pending result.

    The internal lock only guards the pending-map bookkeeping and
    is never held while *fn* runs, so unrelated keys never block
    each other.

    Usage::

        group = InflightGroup("uploads")
        handle = group.run(content_key, lambda: upload(data), timeout=600)
    """

    def __init__(
        self,
        name: str,
        *,
        max_workers: int = 8,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        self._name = name
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix=f"inflight-{name}",
        )
        # RLock: a done-callback may fire synchronously in the
        # submitting thread while the lock is still held.
        self._lock = threading.RLock()
        self._pending: dict[str, Future[T]] = {}
        self._waiters: dict[str, int] = {}

    # ── Public API ──────────────────────────────────────────

    def run(
        self,
        key: str,
        fn: Callable[[], T],
        *,
        timeout: float | None = None,
    ) -> T:
        """Run *fn* once per key and return its result to every caller.

        Args:
            key: De-duplication key (content key, distributor id).
            fn: Zero-argument callable doing the shared work.
            timeout: Seconds this caller is willing to wait.  The
                shared work is unaffected when the wait expires.

        Returns:
            The value returned by the single *fn* call.

        Raises:
            concurrent.futures.TimeoutError: If *timeout* expires.
            Exception: Whatever the shared *fn* call raised.
        """
        with self._lock:
            future = self._pending.get(key)
            # Waiters can wake before the done-callback clears a
            # finished future; never join one.
            if future is None or future.done():
                future = self._executor.submit(fn)
                self._pending[key] = future
                future.add_done_callback(
                    lambda f, k=key: self._clear(k, f),
                )
                logger.debug("Started %s work for key=%.12s", self._name, key)
            else:
                logger.debug("Joined in-flight %s work for key=%.12s", self._name, key)
            self._waiters[key] = self._waiters.get(key, 0) + 1

        try:
            return future.result(timeout=timeout)
        finally:
            with self._lock:
                remaining = self._waiters.get(key, 1) - 1
                if remaining > 0:
                    self._waiters[key] = remaining
                else:
                    self._waiters.pop(key, None)

    def is_pending(self, key: str) -> bool:
        """Whether work for *key* is currently in flight."""
        with self._lock:
            return key in self._pending

    def waiter_count(self, key: str) -> int:
        """Number of callers currently waiting on *key*."""
        with self._lock:
            return self._waiters.get(key, 0)

    def shutdown(self, wait: bool = True) -> None:
        """Stop the executor if this group created it."""
        if self._owns_executor:
            self._executor.shutdown(wait=wait)

    # ── Internals ───────────────────────────────────────────

    def _clear(self, key: str, future: Future[T]) -> None:
        with self._lock:
            if self._pending.get(key) is future:
                del self._pending[key]
