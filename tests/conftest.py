import io
import threading
import time
from typing import Callable, Sequence, Tuple

import numpy as np
import pytest
from PIL import Image

from visionpool.config import DecoderConfig, PipelineConfig, PoolConfig, ServiceConfig
from visionpool.pipeline.stages import PipelineStage
from visionpool.pipeline.types import StageData

Rect = Tuple[int, int, int, int]


def draw_scene(width: int, height: int, rects: Sequence[Rect] = (), background: int = 20, fill: int = 230) -> np.ndarray:
    """RGB array with filled rectangles given as (x, y, w, h)."""
    pixels = np.full((height, width, 3), background, dtype=np.uint8)
    for x, y, w, h in rects:
        pixels[y:y + h, x:x + w] = fill
    return pixels


def encode(pixels: np.ndarray, fmt: str = "PNG") -> bytes:
    buffer = io.BytesIO()
    Image.fromarray(pixels).save(buffer, format=fmt)
    return buffer.getvalue()


def wait_until(predicate: Callable[[], bool], timeout: float = 2.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class SleepStage(PipelineStage):
    """Holds the context for a fixed time without touching it."""

    name = "sleep"

    def __init__(self, seconds: float):
        self.seconds = seconds

    def process(self, data: StageData, context, config) -> StageData:
        time.sleep(self.seconds)
        return data


class BlockingStage(PipelineStage):
    """Waits on an event so tests control when executions finish."""

    name = "block"

    def __init__(self, release: threading.Event, started: threading.Event = None):
        self.release = release
        self.started = started

    def process(self, data: StageData, context, config) -> StageData:
        if self.started is not None:
            self.started.set()
        if not self.release.wait(timeout=5):
            raise RuntimeError("blocking stage was never released")
        return data


class ExplodingStage(PipelineStage):
    def __init__(self, name: str):
        self.name = name

    def process(self, data: StageData, context, config) -> StageData:
        raise RuntimeError(f"injected failure in {self.name}")


def service_config(**pool_overrides) -> ServiceConfig:
    pool = PoolConfig(**{"pool_size": 2, "queue_bound": 4, "request_timeout_s": 5.0, "acquire_timeout_s": 2.0, **pool_overrides})
    return ServiceConfig(pool=pool, decoder=DecoderConfig(), pipeline=PipelineConfig())


@pytest.fixture
def scene_rects():
    return [(40, 30, 60, 50), (120, 80, 50, 40)]


@pytest.fixture
def scene_png(scene_rects):
    return encode(draw_scene(200, 150, scene_rects))


@pytest.fixture
def blank_png():
    return encode(draw_scene(64, 48))
