from abc import ABC, abstractmethod
from dataclasses import replace
from typing import List, Tuple

import cv2
import numpy as np

from ..config import PipelineConfig
from ..native.context import NativeContext
from .types import Region, StageData


class PipelineStage(ABC):
    """
    One step of the pipeline. process() receives the previous stage's
    output and must not keep a reference to `context` after it returns.
    """

    name: str = "stage"

    @abstractmethod
    def process(self, data: StageData, context: NativeContext, config: PipelineConfig) -> StageData:
        raise NotImplementedError


class NormalizeStage(PipelineStage):
    """RGB -> grayscale, downscale to working_size, CLAHE equalization."""

    name = "normalize"

    def process(self, data: StageData, context: NativeContext, config: PipelineConfig) -> StageData:
        gray = cv2.cvtColor(data.image, cv2.COLOR_RGB2GRAY)

        scale = 1.0
        longest = max(data.original_width, data.original_height)
        if longest > config.working_size:
            scale = config.working_size / longest
            size = (
                max(1, round(data.original_width * scale)),
                max(1, round(data.original_height * scale)),
            )
            gray = cv2.resize(gray, size, interpolation=cv2.INTER_AREA)

        equalized = context.equalize(gray)
        return replace(data, image=equalized, scale=scale)


class TransformStage(PipelineStage):
    """Blur, Canny edges, then close small gaps in the edge map."""

    name = "transform"

    def process(self, data: StageData, context: NativeContext, config: PipelineConfig) -> StageData:
        k = config.blur_kernel
        blurred = cv2.GaussianBlur(data.image, (k, k), 0)
        edges = cv2.Canny(blurred, config.canny_low, config.canny_high)
        closed = context.close_gaps(edges)
        metadata = {**data.metadata, "edge_density": round(float(np.count_nonzero(closed)) / closed.size, 4)}
        return replace(data, image=closed, metadata=metadata)


class AnalyzeStage(PipelineStage):
    """
    Box every external contour of the edge map and score it by how much of
    its bounding box the contour fills.
    """

    name = "analyze"

    def process(self, data: StageData, context: NativeContext, config: PipelineConfig) -> StageData:
        boxes = context.find_boxes(data.image)
        min_area = config.min_area_fraction * data.original_width * data.original_height

        regions: List[Region] = []
        for x, y, w, h, contour_area in boxes:
            box_area = float(w * h)
            if box_area <= 0:
                continue
            score = round(min(max(contour_area / box_area, 0.0), 1.0), 4)
            region = self._to_original(x, y, w, h, score, data)
            if region.width * region.height < min_area or region.score < config.min_score:
                continue
            regions.append(region)

        regions.sort(key=lambda r: (-r.score, r.y, r.x))
        kept = tuple(regions[: config.max_regions])
        metadata = {**data.metadata, "candidates": len(boxes), "regions": len(kept)}
        return replace(data, regions=kept, metadata=metadata)

    @staticmethod
    def _to_original(x: int, y: int, w: int, h: int, score: float, data: StageData) -> Region:
        # working pixels -> original pixels, clipped to the image
        inv = 1.0 / data.scale
        x0 = min(max(int(np.floor(x * inv)), 0), data.original_width - 1)
        y0 = min(max(int(np.floor(y * inv)), 0), data.original_height - 1)
        x1 = min(int(np.ceil((x + w) * inv)), data.original_width)
        y1 = min(int(np.ceil((y + h) * inv)), data.original_height)
        return Region(x=x0, y=y0, width=max(x1 - x0, 1), height=max(y1 - y0, 1), score=score)


def default_stages() -> Tuple[PipelineStage, ...]:
    return (NormalizeStage(), TransformStage(), AnalyzeStage())
