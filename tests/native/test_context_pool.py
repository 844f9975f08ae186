import threading
import time

import numpy as np
import pytest

from visionpool.config import PipelineConfig
from visionpool.errors import ContextNotHeldError, ResourceExhausted
from visionpool.native.context import NativeContext
from visionpool.native.pool import ContextPool


class FakeContext:
    """Stand-in for NativeContext that records its lifecycle."""

    def __init__(self, index):
        self.index = index
        self.owner = None
        self.closed = False

    def bind(self):
        assert self.owner is None, "context bound twice"
        self.owner = threading.get_ident()

    def unbind(self):
        self.owner = None

    def close(self):
        self.closed = True


class TestContextPool:
    """Test suite for ContextPool checkout/release discipline"""

    @pytest.fixture
    def built(self):
        return []

    @pytest.fixture
    def pool(self, built):
        def factory(index):
            ctx = FakeContext(index)
            built.append(ctx)
            return ctx
        return ContextPool(capacity=2, factory=factory)

    def test_contexts_built_lazily(self, pool, built):
        assert built == []
        lease = pool.acquire(timeout=0.1)
        assert len(built) == 1
        lease.release()

        # the idle context is reused rather than building another
        with pool.checkout(timeout=0.1) as ctx:
            assert ctx is built[0]
        assert len(built) == 1
        assert pool.get_stats()["created"] == 1

    def test_exhaustion_after_timeout(self, pool):
        a = pool.acquire(timeout=0.1)
        b = pool.acquire(timeout=0.1)

        start = time.monotonic()
        with pytest.raises(ResourceExhausted):
            pool.acquire(timeout=0.1)
        assert time.monotonic() - start >= 0.09
        assert pool.get_stats()["total_exhausted"] == 1

        a.release()
        b.release()

    def test_waiter_wakes_when_context_released(self, pool):
        a = pool.acquire(timeout=0.1)
        b = pool.acquire(timeout=0.1)
        threading.Timer(0.05, a.release).start()

        lease = pool.acquire(timeout=2.0)
        assert lease.context is a.context
        lease.release()
        b.release()

    def test_release_is_idempotent(self, pool):
        lease = pool.acquire(timeout=0.1)
        assert lease.release() is True
        assert lease.release() is False
        assert pool.release(lease) is False

        stats = pool.get_stats()
        assert stats["total_acquired"] == 1
        assert stats["total_released"] == 1
        assert stats["in_use"] == 0

    def test_checkout_releases_on_exception(self, pool):
        with pytest.raises(ValueError):
            with pool.checkout(timeout=0.1) as ctx:
                assert ctx.owner is not None
                raise ValueError("boom")

        assert pool.in_use == 0
        assert ctx.owner is None

    def test_checkout_never_exceeds_capacity(self, pool):
        active = []
        peak = []
        lock = threading.Lock()
        errors = []

        def worker():
            try:
                with pool.checkout(timeout=5.0) as ctx:
                    with lock:
                        assert ctx not in active, "context handed to two holders"
                        active.append(ctx)
                        peak.append(len(active))
                    time.sleep(0.01)
                    with lock:
                        active.remove(ctx)
            except Exception as e:  # noqa: BLE001
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(12)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert max(peak) <= 2
        stats = pool.get_stats()
        assert stats["high_water"] <= 2
        assert stats["total_acquired"] == stats["total_released"] == 12

    def test_factory_failure_surfaces_as_exhaustion(self):
        calls = []

        def factory(index):
            calls.append(index)
            if len(calls) == 1:
                raise RuntimeError("driver not ready")
            return FakeContext(index)

        pool = ContextPool(capacity=1, factory=factory)
        with pytest.raises(ResourceExhausted, match="driver not ready"):
            pool.acquire(timeout=0.1)

        # the slot is returned, so the next attempt can build it
        lease = pool.acquire(timeout=0.1)
        assert lease.index == 0
        lease.release()

    def test_close_destroys_idle_and_released_contexts(self, pool, built):
        idle = pool.acquire(timeout=0.1)
        held = pool.acquire(timeout=0.1)
        idle.release()

        pool.close()
        assert idle.context.closed is True
        assert held.context.closed is False

        held.release()
        assert held.context.closed is True

        with pytest.raises(ResourceExhausted, match="closed"):
            pool.acquire(timeout=0.1)

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            ContextPool(capacity=0, factory=FakeContext)


class TestNativeContext:
    """Test suite for the OpenCV-backed context"""

    @pytest.fixture
    def pool(self):
        pool = ContextPool(capacity=1, factory=NativeContext.factory(PipelineConfig()))
        yield pool
        pool.close()

    def test_native_calls_require_lease(self, pool):
        gray = np.zeros((32, 32), dtype=np.uint8)
        with pool.checkout(timeout=0.1) as ctx:
            assert ctx.equalize(gray).shape == gray.shape

        with pytest.raises(ContextNotHeldError):
            ctx.equalize(gray)

    def test_other_thread_cannot_use_held_context(self, pool):
        gray = np.zeros((16, 16), dtype=np.uint8)
        errors = []

        with pool.checkout(timeout=0.1) as ctx:
            def intruder():
                try:
                    ctx.equalize(gray)
                except ContextNotHeldError as e:
                    errors.append(e)

            t = threading.Thread(target=intruder)
            t.start()
            t.join()

        assert len(errors) == 1

    def test_find_boxes_on_square(self, pool):
        binary = np.zeros((50, 50), dtype=np.uint8)
        binary[10:30, 15:40] = 255
        with pool.checkout(timeout=0.1) as ctx:
            boxes = ctx.find_boxes(binary)

        assert len(boxes) == 1
        x, y, w, h, area = boxes[0]
        assert (x, y, w, h) == (15, 10, 25, 20)
        assert 0 < area <= w * h

    def test_closed_context_rejects_calls(self, pool):
        lease = pool.acquire(timeout=0.1)
        ctx = lease.context
        ctx.close()
        with pytest.raises(ContextNotHeldError, match="closed"):
            ctx.close_gaps(np.zeros((8, 8), dtype=np.uint8))
        lease.release()
