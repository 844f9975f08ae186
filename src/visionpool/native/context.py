from __future__ import annotations
from typing import List, Optional, Tuple
import logging
import threading

import cv2
import numpy as np

from ..config import PipelineConfig
from ..errors import ContextNotHeldError

logger = logging.getLogger(__name__)


class NativeContext:
    """
    OpenCV state shared by pipeline runs: a CLAHE equalizer and a
    morphology kernel.

    cv2.CLAHE objects are stateful and not safe to share between threads,
    so every native call checks that the calling thread holds the lease the
    pool bound to this context.
    """

    def __init__(self, index: int, config: PipelineConfig):
        self.index = index
        self._clahe = cv2.createCLAHE(
            clipLimit=config.clahe_clip_limit,
            tileGridSize=(config.clahe_tile_size, config.clahe_tile_size),
        )
        self._kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (config.morph_kernel, config.morph_kernel))
        self._owner: Optional[int] = None
        self._closed = False
        logger.info(f"created native context #{index}")

    @classmethod
    def factory(cls, config: PipelineConfig):
        def build(index: int) -> "NativeContext":
            return cls(index, config)
        return build

    # lease binding, driven by ContextPool
    def bind(self) -> None:
        if self._owner is not None:
            raise ContextNotHeldError(f"Context #{self.index} is already held by thread {self._owner}")
        self._owner = threading.get_ident()

    def unbind(self) -> None:
        self._owner = None

    @property
    def held(self) -> bool:
        return self._owner is not None

    def _require_held(self) -> None:
        if self._closed:
            raise ContextNotHeldError(f"Context #{self.index} has been closed")
        if self._owner != threading.get_ident():
            raise ContextNotHeldError(f"Context #{self.index} used without a lease held by this thread")

    # native operations
    def equalize(self, gray: np.ndarray) -> np.ndarray:
        self._require_held()
        return self._clahe.apply(gray)

    def close_gaps(self, edges: np.ndarray) -> np.ndarray:
        self._require_held()
        return cv2.morphologyEx(edges, cv2.MORPH_CLOSE, self._kernel)

    def find_boxes(self, binary: np.ndarray) -> List[Tuple[int, int, int, int, float]]:
        """External contours as (x, y, w, h, contour_area) in working pixels."""
        self._require_held()
        contours, _ = cv2.findContours(binary, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
        boxes = []
        for contour in contours:
            x, y, w, h = cv2.boundingRect(contour)
            boxes.append((int(x), int(y), int(w), int(h), float(cv2.contourArea(contour))))
        return boxes

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._clahe = None
        self._kernel = None
        logger.info(f"destroyed native context #{self.index}")

    @property
    def closed(self) -> bool:
        return self._closed
