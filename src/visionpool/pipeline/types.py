from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union
import time
import uuid

import numpy as np

from ..errors import ErrorKind


# Input types
@dataclass(frozen=True)
class ImageRequest:
    payload: bytes = field(repr=False)
    content_type: str
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    received_at: float = field(default_factory=time.monotonic)

    @property
    def size(self) -> int:
        return len(self.payload)


class DecodedImage:
    """
    Pixel buffer produced by the decoder, owned by a single execution.

    The buffer is an H x W x 3 uint8 RGB array. release() drops it and is
    safe to call more than once.
    """

    def __init__(self, pixels: np.ndarray, source_format: str):
        if pixels.ndim != 3 or pixels.dtype != np.uint8:
            raise ValueError(f"Expected HxWxC uint8 pixels, got {pixels.dtype} {pixels.shape}")
        self._pixels: Optional[np.ndarray] = pixels
        self.height, self.width, self.channels = (int(d) for d in pixels.shape)
        self.source_format = source_format

    @property
    def pixels(self) -> np.ndarray:
        if self._pixels is None:
            raise RuntimeError("DecodedImage has already been released")
        return self._pixels

    @property
    def released(self) -> bool:
        return self._pixels is None

    @property
    def nbytes(self) -> int:
        return 0 if self._pixels is None else int(self._pixels.nbytes)

    def release(self) -> None:
        self._pixels = None

    def __enter__(self) -> "DecodedImage":
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()

    def __repr__(self) -> str:
        state = "released" if self.released else "live"
        return f"DecodedImage({self.width}x{self.height}x{self.channels}, {self.source_format}, {state})"


# Output types
@dataclass(frozen=True)
class Region:
    """Axis-aligned box in original-image pixels, origin top-left, y down."""
    x: int
    y: int
    width: int
    height: int
    score: float


@dataclass(frozen=True)
class StageTiming:
    stage: str
    elapsed_ms: float


@dataclass(frozen=True)
class PipelineResult:
    regions: Tuple[Region, ...]
    image_width: int
    image_height: int
    timings: Tuple[StageTiming, ...]
    total_ms: float
    transformed_image: Optional[str] = None  #base64 PNG when requested


@dataclass
class StageData:
    """Working state handed from one stage to the next."""
    image: np.ndarray
    original_width: int
    original_height: int
    scale: float = 1.0  #working pixels per original pixel
    regions: Tuple[Region, ...] = ()
    metadata: Dict[str, Any] = field(default_factory=dict)


# Terminal outcomes
@dataclass(frozen=True)
class Success:
    request_id: str
    result: PipelineResult

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    request_id: str
    kind: ErrorKind
    detail: str
    stage: Optional[str] = None

    @property
    def ok(self) -> bool:
        return False


RequestOutcome = Union[Success, Failure]


class SlotState(Enum):
    IDLE = "idle"
    DECODING = "decoding"
    AWAITING_CONTEXT = "awaiting_context"
    PROCESSING = "processing"
    COMPLETING = "completing"
