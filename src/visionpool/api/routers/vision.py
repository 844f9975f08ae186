"""
Vision processing API endpoints.
"""
from fastapi import APIRouter, Depends, File, Header, Request, UploadFile
from fastapi.responses import JSONResponse
from typing import Dict, Optional, Union
import logging
import uuid

from ..models.common import APIError, ErrorDetails
from ..models.vision import APIPipelineResult, ProcessData, ProcessResponse
from ..dependencies.service import get_vision_service
from ...errors import ErrorKind
from ...pipeline.types import Failure, ImageRequest, RequestOutcome
from ...service import VisionService

logger = logging.getLogger(__name__)

router = APIRouter()

STATUS_BY_KIND: Dict[ErrorKind, int] = {
    ErrorKind.MALFORMED: 400,
    ErrorKind.UNSUPPORTED: 400,
    ErrorKind.TOO_LARGE: 400,
    ErrorKind.OVERLOADED: 503,
    ErrorKind.RESOURCE_EXHAUSTED: 503,
    ErrorKind.TIMEOUT: 504,
    ErrorKind.PROCESSING_ERROR: 500,
}

ERROR_RESPONSES = {
    400: {"model": APIError, "description": "Malformed, unsupported or oversized image"},
    500: {"model": APIError, "description": "A pipeline stage failed"},
    503: {"model": APIError, "description": "Overloaded or no native context available"},
    504: {"model": APIError, "description": "Request deadline exceeded"},
}


def failure_to_response(failure: Failure) -> JSONResponse:
    error = APIError(
        error=failure.detail,
        error_code=failure.kind,
        details=ErrorDetails(
            request_id=failure.request_id,
            category=failure.kind.category,
            stage=failure.stage,
        ),
    )
    return JSONResponse(
        status_code=STATUS_BY_KIND[failure.kind],
        content=error.model_dump(mode="json", exclude_none=True),
        headers={"X-Request-ID": failure.request_id},
    )


def outcome_to_response(outcome: RequestOutcome) -> Union[ProcessResponse, JSONResponse]:
    if isinstance(outcome, Failure):
        return failure_to_response(outcome)
    return ProcessResponse(
        success=True,
        message="Image processed successfully",
        data=ProcessData(
            request_id=outcome.request_id,
            result=APIPipelineResult.from_result(outcome.result),
        ),
    )


def _build_request(payload: bytes, content_type: Optional[str], request_id: Optional[str]) -> ImageRequest:
    if request_id:
        return ImageRequest(payload=payload, content_type=content_type or "", request_id=request_id)
    return ImageRequest(payload=payload, content_type=content_type or "")


def _too_large(request_id: Optional[str], size: int, limit: int) -> JSONResponse:
    logger.info(f"rejecting {size}-byte body at ingress (limit {limit})")
    return failure_to_response(Failure(
        request_id or uuid.uuid4().hex,
        ErrorKind.TOO_LARGE,
        f"Payload of {size} bytes exceeds limit of {limit}",
    ))


async def _read_body(request: Request, limit: int) -> Optional[bytes]:
    """Request body, or None as soon as it grows past `limit` bytes."""
    chunks = []
    received = 0
    async for chunk in request.stream():
        received += len(chunk)
        if received > limit:
            return None
        chunks.append(chunk)
    return b"".join(chunks)


@router.post("/process", response_model=ProcessResponse, responses=ERROR_RESPONSES)
async def process_image(
    request: Request,
    content_type: Optional[str] = Header(None),
    content_length: Optional[int] = Header(None),
    x_request_id: Optional[str] = Header(None),
    service: VisionService = Depends(get_vision_service),
):
    """
    Process a raw image body. The Content-Type header declares the format.

    Bodies over max_payload_bytes are refused from Content-Length, or while
    streaming when no length is declared, before they are buffered.
    """
    limit = service.config.decoder.max_payload_bytes
    if content_length is not None and content_length > limit:
        return _too_large(x_request_id, content_length, limit)

    payload = await _read_body(request, limit)
    if payload is None:
        return _too_large(x_request_id, content_length or limit + 1, limit)

    image_request = _build_request(payload, content_type, x_request_id)
    outcome = await service.dispatcher.handle_async(image_request)
    return outcome_to_response(outcome)


@router.post("/upload", response_model=ProcessResponse, responses=ERROR_RESPONSES)
async def upload_image(
    file: UploadFile = File(...),
    x_request_id: Optional[str] = Header(None),
    service: VisionService = Depends(get_vision_service),
):
    """
    Process an image sent as a multipart upload; the part's content type
    declares the format.
    """
    limit = service.config.decoder.max_payload_bytes
    if file.size is not None and file.size > limit:
        return _too_large(x_request_id, file.size, limit)

    # the spooled part is read at most one byte past the limit
    payload = await file.read(limit + 1)
    if len(payload) > limit:
        return _too_large(x_request_id, file.size or len(payload), limit)

    image_request = _build_request(payload, file.content_type, x_request_id)
    outcome = await service.dispatcher.handle_async(image_request)
    return outcome_to_response(outcome)
