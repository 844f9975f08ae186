"""
API models for the vision processing endpoints.

These Pydantic models are the wire contract for pipeline results. Coordinates
are integer pixels of the decoded image with the origin at the top-left
corner, x growing right and y growing down. Boxes are [x, y, width, height];
scores are in [0, 1]; timings are milliseconds.
"""

from pydantic import BaseModel, Field
from typing import List, Optional

from .common import APIResponse
from ...pipeline.types import PipelineResult, Region, StageTiming


class APIRegion(BaseModel):
    x: int = Field(..., ge=0, description="Left edge in pixels")
    y: int = Field(..., ge=0, description="Top edge in pixels")
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)
    score: float = Field(..., ge=0.0, le=1.0, description="Contour fill ratio of the box")

class APIStageTiming(BaseModel):
    stage: str
    elapsed_ms: float

class APIPipelineResult(BaseModel):
    """Serialized PipelineResult."""
    regions: List[APIRegion]
    image_width: int = Field(..., gt=0)
    image_height: int = Field(..., gt=0)
    timings: List[APIStageTiming]
    total_ms: float
    transformed_image: Optional[str] = Field(None, description="Base64 PNG of the transformed image")

    @classmethod
    def from_result(cls, result: PipelineResult) -> "APIPipelineResult":
        return cls(
            regions=[
                APIRegion(x=r.x, y=r.y, width=r.width, height=r.height, score=r.score)
                for r in result.regions
            ],
            image_width=result.image_width,
            image_height=result.image_height,
            timings=[APIStageTiming(stage=t.stage, elapsed_ms=t.elapsed_ms) for t in result.timings],
            total_ms=result.total_ms,
            transformed_image=result.transformed_image,
        )

    def to_result(self) -> PipelineResult:
        return PipelineResult(
            regions=tuple(Region(x=r.x, y=r.y, width=r.width, height=r.height, score=r.score) for r in self.regions),
            image_width=self.image_width,
            image_height=self.image_height,
            timings=tuple(StageTiming(stage=t.stage, elapsed_ms=t.elapsed_ms) for t in self.timings),
            total_ms=self.total_ms,
            transformed_image=self.transformed_image,
        )

class ProcessData(BaseModel):
    """Data payload for a processed image."""
    request_id: str
    result: APIPipelineResult

class ProcessResponse(APIResponse):
    """Response after successful image processing."""
    data: Optional[ProcessData] = None
