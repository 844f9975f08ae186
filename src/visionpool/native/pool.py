from __future__ import annotations
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional
import logging
import threading
import time

from ..errors import ResourceExhausted
from .context import NativeContext

logger = logging.getLogger(__name__)


class ContextLease:
    """Exclusive checkout of one context. release() is safe to repeat."""

    def __init__(self, pool: "ContextPool", index: int, context: NativeContext):
        self._pool = pool
        self.index = index
        self.context = context
        self._released = False
        self._lock = threading.Lock()

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> bool:
        with self._lock:
            if self._released:
                return False
            self._released = True
        self._pool._return(self)
        return True

    def __enter__(self) -> NativeContext:
        return self.context

    def __exit__(self, *exc_info) -> None:
        self.release()


class ContextPool:
    """
    Bounded arena of native contexts.

    Contexts are built lazily by `factory(index)` until `capacity` exist and
    are only destroyed by close(). acquire() blocks the calling thread until
    a context is free or the timeout elapses.
    """

    def __init__(self, capacity: int, factory: Callable[[int], NativeContext]):
        if capacity < 1:
            raise ValueError("ContextPool capacity must be at least 1")
        self.capacity = capacity
        self._factory = factory
        self._arena: List[Optional[NativeContext]] = [None] * capacity
        self._idle: List[int] = []
        self._unbuilt: List[int] = list(range(capacity - 1, -1, -1))
        self._in_use = 0
        self._closed = False
        self._cond = threading.Condition()
        self._stats = {
            "total_acquired": 0,
            "total_released": 0,
            "total_exhausted": 0,
            "high_water": 0,
            "total_wait_ms": 0.0,
        }

    def acquire(self, timeout: float) -> ContextLease:
        start_time = time.perf_counter()
        deadline = time.monotonic() + max(timeout, 0.0)
        build_index = None

        with self._cond:
            while True:
                if self._closed:
                    raise ResourceExhausted("Context pool is closed")
                if self._idle:
                    index = self._idle.pop()
                    break
                if self._unbuilt:
                    build_index = self._unbuilt.pop()
                    break
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self._stats["total_exhausted"] += 1
                    logger.warning(f"no native context free after {timeout:.3f}s (capacity={self.capacity})")
                    raise ResourceExhausted(
                        f"No native context available within {timeout:.3f}s",
                        capacity=self.capacity,
                    )
                self._cond.wait(remaining)

        if build_index is not None:
            index = build_index
            try:
                context = self._factory(index)
            except Exception as e:
                logger.error(f"Failed to build native context #{index}: {e}")
                with self._cond:
                    self._unbuilt.append(index)
                    self._stats["total_exhausted"] += 1
                    self._cond.notify()
                raise ResourceExhausted(f"Could not create native context: {e}", cause=repr(e)) from e
            with self._cond:
                self._arena[index] = context

        context = self._arena[index]
        context.bind()
        with self._cond:
            self._in_use += 1
            self._stats["total_acquired"] += 1
            self._stats["high_water"] = max(self._stats["high_water"], self._in_use)
            self._stats["total_wait_ms"] += (time.perf_counter() - start_time) * 1000
        return ContextLease(self, index, context)

    def release(self, lease: ContextLease) -> bool:
        return lease.release()

    def _return(self, lease: ContextLease) -> None:
        context = lease.context
        context.unbind()
        with self._cond:
            self._in_use -= 1
            self._stats["total_released"] += 1
            if self._closed:
                context.close()
            else:
                self._idle.append(lease.index)
            self._cond.notify()

    @contextmanager
    def checkout(self, timeout: float) -> Iterator[NativeContext]:
        lease = self.acquire(timeout)
        try:
            yield lease.context
        finally:
            lease.release()

    @property
    def in_use(self) -> int:
        with self._cond:
            return self._in_use

    def get_stats(self) -> Dict[str, Any]:
        with self._cond:
            return {
                "capacity": self.capacity,
                "created": sum(1 for c in self._arena if c is not None),
                "in_use": self._in_use,
                "closed": self._closed,
                **self._stats,
            }

    def close(self) -> None:
        """Destroy idle contexts now; contexts still leased are destroyed on release."""
        with self._cond:
            if self._closed:
                return
            self._closed = True
            idle = [self._arena[i] for i in self._idle]
            self._idle.clear()
            self._cond.notify_all()
        for context in idle:
            try:
                context.close()
            except Exception as e:
                logger.error(f"Cleanup failed for native context #{context.index}: {e}")
        logger.info("context pool closed")
