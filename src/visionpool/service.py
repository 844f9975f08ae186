from __future__ import annotations
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, Optional, Sequence
import logging

from .config import ServiceConfig
from .native.context import NativeContext
from .native.pool import ContextPool
from .pipeline.decoder import ImageDecoder
from .pipeline.dispatcher import Dispatcher
from .pipeline.lifecycle import RequestLifecycle
from .pipeline.pipeline import ProcessingPipeline
from .pipeline.stages import PipelineStage

logger = logging.getLogger(__name__)


class VisionService:
    """Wires decoder, pipeline, context pool and dispatcher from one config."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        stages: Optional[Sequence[PipelineStage]] = None,
        context_factory: Optional[Callable[[int], NativeContext]] = None,
    ):
        self.config = config or ServiceConfig()
        pool_cfg = self.config.pool

        self.contexts = ContextPool(
            capacity=pool_cfg.pool_size,
            factory=context_factory or NativeContext.factory(self.config.pipeline),
        )
        self.decoder = ImageDecoder(self.config.decoder)
        self.pipeline = ProcessingPipeline(self.config.pipeline, stages=stages)
        self.lifecycle = RequestLifecycle(
            decoder=self.decoder,
            pipeline=self.pipeline,
            contexts=self.contexts,
            pool_config=pool_cfg,
            pipeline_config=self.config.pipeline,
        )
        self.dispatcher = Dispatcher(
            self.lifecycle,
            pool_size=pool_cfg.pool_size,
            queue_bound=pool_cfg.queue_bound,
            admission_timeout_s=pool_cfg.admission_timeout_s,
        )
        self._closed = False
        logger.info(
            f"vision service ready: pool_size={pool_cfg.pool_size} queue_bound={pool_cfg.queue_bound} "
            f"timeout={pool_cfg.request_timeout_s}s stages={self.pipeline.stage_names}"
        )

    @property
    def closed(self) -> bool:
        return self._closed

    def get_stats(self) -> Dict[str, Any]:
        return {
            "dispatcher": self.dispatcher.get_stats(),
            "contexts": self.contexts.get_stats(),
        }

    def close(self, wait: bool = True) -> None:
        if self._closed:
            return
        self._closed = True
        self.dispatcher.shutdown(wait=wait)
        self.contexts.close()

    @contextmanager
    def session(self) -> Iterator["VisionService"]:
        try:
            yield self
        finally:
            self.close()
