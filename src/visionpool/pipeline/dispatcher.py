from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional
import asyncio
import logging
import queue
import threading
import time

from ..errors import ErrorKind
from .lifecycle import RequestLifecycle, RequestTicket
from .types import Failure, ImageRequest, RequestOutcome, SlotState

logger = logging.getLogger(__name__)


class ExecutionSlot:
    """One of the pool's execution slots; always ends a request back in IDLE."""

    def __init__(self, index: int):
        self.index = index
        self.state = SlotState.IDLE
        self.request_id: Optional[str] = None
        self.completed = 0

    def claim(self, request_id: str) -> None:
        if self.state is not SlotState.IDLE:
            raise RuntimeError(f"Slot {self.index} claimed while {self.state.value}")
        self.request_id = request_id

    def transition(self, state: SlotState) -> None:
        logger.debug(f"slot {self.index} [{self.request_id}] {self.state.value} -> {state.value}")
        self.state = state

    def reset(self) -> None:
        self.state = SlotState.IDLE
        self.request_id = None
        self.completed += 1


class Dispatcher:
    """
    Bounded worker pool in front of RequestLifecycle.

    Up to `pool_size` requests run at once and up to `queue_bound` more wait
    in FIFO order. Past that, submit() returns a ticket already resolved to
    Overloaded (after waiting at most `admission_timeout_s` for room).
    """

    def __init__(
        self,
        lifecycle: RequestLifecycle,
        pool_size: int,
        queue_bound: int,
        admission_timeout_s: float = 0.0,
    ):
        if pool_size < 1:
            raise ValueError("pool_size must be at least 1")
        if queue_bound < 0:
            raise ValueError("queue_bound cannot be negative")
        self.lifecycle = lifecycle
        self.pool_size = pool_size
        self.queue_bound = queue_bound
        self.admission_timeout_s = admission_timeout_s

        self._executor = ThreadPoolExecutor(max_workers=pool_size, thread_name_prefix="visionpool-slot")
        self._slots = [ExecutionSlot(i) for i in range(pool_size)]
        self._idle_slots: "queue.SimpleQueue[ExecutionSlot]" = queue.SimpleQueue()
        for slot in self._slots:
            self._idle_slots.put(slot)

        self._admission = threading.Condition()
        self._in_flight = 0
        self._running = 0
        self._closed = False
        self._stats = {"admitted": 0, "rejected": 0, "completed": 0}

    @property
    def capacity(self) -> int:
        return self.pool_size + self.queue_bound

    def submit(self, request: ImageRequest) -> RequestTicket:
        ticket = self.lifecycle.new_ticket(request)

        if not self._admit():
            ticket.resolve(Failure(
                request.request_id,
                ErrorKind.OVERLOADED,
                f"Service saturated: {self.pool_size} running and {self.queue_bound} queued",
            ))
            return ticket

        try:
            self._executor.submit(self._run, ticket)
        except RuntimeError as e:
            # executor shut down between admission and submit
            self._finish()
            ticket.resolve(Failure(request.request_id, ErrorKind.OVERLOADED, f"Dispatcher is shutting down: {e}"))
        return ticket

    def handle(self, request: ImageRequest) -> RequestOutcome:
        return self.submit(request).wait()

    async def handle_async(self, request: ImageRequest) -> RequestOutcome:
        # admission may wait up to admission_timeout_s; keep that off the event loop
        ticket = await asyncio.to_thread(self.submit, request)
        return await ticket.wait_async()

    def _admit(self) -> bool:
        deadline = time.monotonic() + self.admission_timeout_s
        with self._admission:
            while True:
                if self._closed:
                    self._stats["rejected"] += 1
                    return False
                if self._in_flight < self.capacity:
                    self._in_flight += 1
                    self._stats["admitted"] += 1
                    return True
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self._stats["rejected"] += 1
                    logger.warning(f"rejecting request: {self._in_flight} in flight (capacity {self.capacity})")
                    return False
                self._admission.wait(remaining)

    def _finish(self) -> None:
        with self._admission:
            self._in_flight -= 1
            self._admission.notify()

    def _run(self, ticket: RequestTicket) -> None:
        slot = self._idle_slots.get()
        slot.claim(ticket.request_id)
        with self._admission:
            self._running += 1
        try:
            self.lifecycle.handle(ticket.request, ticket, on_state=slot.transition)
        finally:
            slot.reset()
            self._idle_slots.put(slot)
            with self._admission:
                self._running -= 1
                self._stats["completed"] += 1
            self._finish()

    def get_stats(self) -> Dict[str, Any]:
        with self._admission:
            in_flight, running = self._in_flight, self._running
            stats: Dict[str, Any] = {
                "pool_size": self.pool_size,
                "queue_bound": self.queue_bound,
                "in_flight": in_flight,
                "running": running,
                "pending": max(in_flight - running, 0),
                "closed": self._closed,
                **self._stats,
            }
        stats["slots"] = [{"index": s.index, "state": s.state.value, "completed": s.completed} for s in self._slots]
        return stats

    def slot_states(self) -> List[SlotState]:
        return [slot.state for slot in self._slots]

    def shutdown(self, wait: bool = True) -> None:
        with self._admission:
            self._closed = True
            self._admission.notify_all()
        self._executor.shutdown(wait=wait)
        logger.info("dispatcher shut down")
