from typing import Callable, List, Optional, Sequence
import logging
import time

from ..config import PipelineConfig
from ..errors import ProcessingError, RequestTimeout
from ..native.context import NativeContext
from ..utils.image_converter import to_base64
from .stages import PipelineStage, default_stages
from .types import DecodedImage, PipelineResult, StageData, StageTiming

logger = logging.getLogger(__name__)

CancelCheck = Callable[[], None]


class ProcessingPipeline:
    def __init__(self, config: Optional[PipelineConfig] = None, stages: Optional[Sequence[PipelineStage]] = None):
        self.config = config or PipelineConfig()
        self.stages: List[PipelineStage] = list(stages) if stages is not None else list(default_stages())
        if not self.stages:
            raise ValueError("ProcessingPipeline needs at least one stage")

    @property
    def stage_names(self) -> List[str]:
        return [stage.name for stage in self.stages]

    def run(
        self,
        image: DecodedImage,
        context: NativeContext,
        config: Optional[PipelineConfig] = None,
        cancel_check: Optional[CancelCheck] = None,
    ) -> PipelineResult:
        """
        Run every stage in order on `image` using the leased `context`.

        cancel_check is called before each stage and once after the last one;
        it raises RequestTimeout to stop the run. Any other stage exception is
        wrapped in ProcessingError and the partial state is dropped.
        """
        config = config or self.config
        start_time = time.perf_counter()

        # Step 1: seed the working state with the decoded pixels
        data = StageData(
            image=image.pixels,
            original_width=image.width,
            original_height=image.height,
        )
        timings: List[StageTiming] = []

        # Step 2: stages run strictly in sequence
        for stage in self.stages:
            if cancel_check is not None:
                cancel_check()
            stage_start = time.perf_counter()
            try:
                data = stage.process(data, context, config)
            except (RequestTimeout, ProcessingError):
                raise
            except Exception as e:
                logger.debug(f"stage '{stage.name}' raised {type(e).__name__}: {e}")
                raise ProcessingError(stage.name, e) from e
            timings.append(StageTiming(stage.name, round((time.perf_counter() - stage_start) * 1000, 3)))
            self._check_regions(data, stage.name)

        if cancel_check is not None:
            cancel_check()

        # Step 3: freeze the output
        transformed = None
        if config.include_image:
            try:
                transformed = to_base64(data.image)
            except ValueError as e:
                raise ProcessingError("encode", e) from e

        return PipelineResult(
            regions=tuple(data.regions),
            image_width=image.width,
            image_height=image.height,
            timings=tuple(timings),
            total_ms=round((time.perf_counter() - start_time) * 1000, 3),
            transformed_image=transformed,
        )

    @staticmethod
    def _check_regions(data: StageData, stage_name: str) -> None:
        """Regions leaving a stage must be non-empty boxes inside the image with scores in [0, 1]."""
        for region in data.regions:
            inside = (
                region.x >= 0
                and region.y >= 0
                and region.width > 0
                and region.height > 0
                and region.x + region.width <= data.original_width
                and region.y + region.height <= data.original_height
            )
            if not inside or not 0.0 <= region.score <= 1.0:
                raise ProcessingError(stage_name, detail=f"Stage '{stage_name}' produced an invalid region: {region}")
