from __future__ import annotations
from concurrent.futures import Future, TimeoutError as FutureTimeout
from typing import Callable, Optional
import asyncio
import logging
import threading
import time
import traceback

from ..config import PipelineConfig, PoolConfig
from ..errors import ErrorKind, ProcessingError, RequestTimeout, ResourceExhausted, VisionError
from ..native.pool import ContextPool
from .decoder import ImageDecoder
from .pipeline import ProcessingPipeline
from .types import Failure, ImageRequest, RequestOutcome, SlotState, Success

logger = logging.getLogger(__name__)

SlotHook = Callable[[SlotState], None]


class RequestTicket:
    """
    Deadline, cancellation flag and single outcome of one request.

    The first resolve() wins; any later outcome (a worker finishing after
    the caller already timed out) is discarded.
    """

    def __init__(self, request: ImageRequest, timeout_s: float):
        self.request = request
        self.timeout_s = timeout_s
        self.deadline = time.monotonic() + timeout_s
        self._future: Future = Future()
        self._cancelled = threading.Event()
        self._lock = threading.Lock()

    @property
    def request_id(self) -> str:
        return self.request.request_id

    def remaining(self) -> float:
        return max(self.deadline - time.monotonic(), 0.0)

    def expired(self) -> bool:
        return time.monotonic() >= self.deadline

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def check(self) -> None:
        """Stage-boundary check; raises RequestTimeout once the request is dead."""
        if self._cancelled.is_set() or self.expired():
            raise RequestTimeout(f"Request exceeded its {self.timeout_s:.3f}s deadline")

    def resolve(self, outcome: RequestOutcome) -> bool:
        with self._lock:
            if self._future.done():
                return False
            self._future.set_result(outcome)
            return True

    @property
    def done(self) -> bool:
        return self._future.done()

    @property
    def outcome(self) -> Optional[RequestOutcome]:
        return self._future.result() if self._future.done() else None

    def expire(self) -> RequestOutcome:
        """Resolve as Timeout (unless already resolved) and signal cancellation."""
        self.cancel()
        if self.resolve(Failure(self.request_id, ErrorKind.TIMEOUT, f"Request exceeded its {self.timeout_s:.3f}s deadline")):
            logger.warning(f"request {self.request_id} timed out after {self.timeout_s:.3f}s")
        return self._future.result()

    def wait(self) -> RequestOutcome:
        try:
            return self._future.result(timeout=self.remaining())
        except FutureTimeout:
            return self.expire()

    async def wait_async(self) -> RequestOutcome:
        wrapped = asyncio.wrap_future(self._future)
        try:
            return await asyncio.wait_for(asyncio.shield(wrapped), timeout=self.remaining())
        except asyncio.TimeoutError:
            return self.expire()


class RequestLifecycle:
    """
    Runs one request end-to-end inside a worker: decode, lease a native
    context, run the pipeline, and turn whatever happened into exactly one
    RequestOutcome.
    """

    def __init__(
        self,
        decoder: ImageDecoder,
        pipeline: ProcessingPipeline,
        contexts: ContextPool,
        pool_config: Optional[PoolConfig] = None,
        pipeline_config: Optional[PipelineConfig] = None,
    ):
        self.decoder = decoder
        self.pipeline = pipeline
        self.contexts = contexts
        self.pool_config = pool_config or PoolConfig()
        self.pipeline_config = pipeline_config or pipeline.config

    def new_ticket(self, request: ImageRequest) -> RequestTicket:
        return RequestTicket(request, self.pool_config.request_timeout_s)

    def handle(self, request: ImageRequest, ticket: Optional[RequestTicket] = None, on_state: Optional[SlotHook] = None) -> RequestOutcome:
        ticket = ticket or self.new_ticket(request)
        on_state = on_state or (lambda state: None)

        try:
            outcome: RequestOutcome = Success(request.request_id, self._execute(request, ticket, on_state))
        except VisionError as e:
            outcome = Failure(request.request_id, e.kind, e.detail, getattr(e, "stage", None))
        except Exception as e:
            logger.error(f"request {request.request_id} failed unexpectedly: {e}\n{traceback.format_exc()}")
            outcome = Failure(request.request_id, ErrorKind.PROCESSING_ERROR, f"Internal error: {e}", "internal")

        on_state(SlotState.COMPLETING)
        if not ticket.resolve(outcome):
            logger.info(f"discarded late {type(outcome).__name__.lower()} for request {request.request_id}")
        return ticket.outcome

    def _execute(self, request: ImageRequest, ticket: RequestTicket, on_state: SlotHook):
        ticket.check()

        on_state(SlotState.DECODING)
        image = self.decoder.decode(request.payload, request.content_type)
        with image:
            ticket.check()

            on_state(SlotState.AWAITING_CONTEXT)
            remaining = ticket.remaining()
            acquire_timeout = self.pool_config.acquire_timeout_s
            try:
                lease = self.contexts.acquire(min(acquire_timeout, remaining))
            except ResourceExhausted:
                # whichever budget ran out first names the failure
                if ticket.expired():
                    raise RequestTimeout(f"Request exceeded its {ticket.timeout_s:.3f}s deadline while waiting for a native context")
                raise

            with lease as context:
                on_state(SlotState.PROCESSING)
                try:
                    return self.pipeline.run(image, context, self.pipeline_config, cancel_check=ticket.check)
                except ProcessingError as e:
                    logger.warning(f"request {request.request_id} failed in stage '{e.stage}': {e.detail}")
                    raise
