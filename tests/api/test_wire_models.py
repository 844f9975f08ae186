import json

import pytest
from pydantic import ValidationError

from visionpool.api.models.common import APIError
from visionpool.api.models.vision import APIPipelineResult, APIRegion, ProcessData, ProcessResponse
from visionpool.api.routers.vision import STATUS_BY_KIND, failure_to_response
from visionpool.errors import ErrorKind
from visionpool.pipeline.types import Failure, PipelineResult, Region, StageTiming


@pytest.fixture
def sample_result():
    return PipelineResult(
        regions=(
            Region(x=39, y=29, width=62, height=52, score=0.9731),
            Region(x=119, y=79, width=52, height=42, score=0.96),
        ),
        image_width=200,
        image_height=150,
        timings=(
            StageTiming("normalize", 0.412),
            StageTiming("transform", 0.873),
            StageTiming("analyze", 0.105),
        ),
        total_ms=1.52,
    )


class TestWireModels:
    """Test suite for the JSON wire contract"""

    def test_result_survives_json(self, sample_result):
        response = ProcessResponse(
            success=True,
            data=ProcessData(request_id="r1", result=APIPipelineResult.from_result(sample_result)),
        )

        text = response.model_dump_json()
        restored = ProcessResponse.model_validate_json(text)

        assert restored.data.result.to_result() == sample_result
        assert json.loads(text)["data"]["result"]["regions"][0] == {
            "x": 39, "y": 29, "width": 62, "height": 52, "score": 0.9731,
        }

    def test_empty_result(self):
        result = PipelineResult(regions=(), image_width=10, image_height=10, timings=(), total_ms=0.0)
        assert APIPipelineResult.from_result(result).to_result() == result

    @pytest.mark.parametrize("field, value", [
        ("x", -1),
        ("width", 0),
        ("score", 1.01),
        ("score", -0.1),
    ])
    def test_region_constraints(self, field, value):
        values = {"x": 0, "y": 0, "width": 1, "height": 1, "score": 0.5, field: value}
        with pytest.raises(ValidationError):
            APIRegion(**values)


class TestFailureResponses:
    def test_every_kind_has_a_status(self):
        assert set(STATUS_BY_KIND) == set(ErrorKind)

    @pytest.mark.parametrize("kind, status", [
        (ErrorKind.MALFORMED, 400),
        (ErrorKind.UNSUPPORTED, 400),
        (ErrorKind.TOO_LARGE, 400),
        (ErrorKind.OVERLOADED, 503),
        (ErrorKind.RESOURCE_EXHAUSTED, 503),
        (ErrorKind.TIMEOUT, 504),
        (ErrorKind.PROCESSING_ERROR, 500),
    ])
    def test_failure_to_response(self, kind, status):
        response = failure_to_response(Failure("req-9", kind, "something went wrong"))

        assert response.status_code == status
        assert response.headers["x-request-id"] == "req-9"
        error = APIError.model_validate_json(response.body)
        assert error.error_code is kind
        assert error.details.request_id == "req-9"
        assert error.details.category is kind.category
        assert error.details.stage is None
        assert "stage" not in json.loads(response.body)["details"]

    def test_stage_included_when_known(self):
        response = failure_to_response(Failure("req-1", ErrorKind.PROCESSING_ERROR, "boom", stage="transform"))
        assert json.loads(response.body)["details"]["stage"] == "transform"
