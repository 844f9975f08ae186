from __future__ import annotations
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCategory(Enum):
    CALLER = "caller"  #bad input, fix the request
    TRANSIENT = "transient"  #retry later
    SYSTEMIC = "systemic"  #service-side failure


class ErrorKind(Enum):
    MALFORMED = "malformed"
    UNSUPPORTED = "unsupported"
    TOO_LARGE = "too_large"
    RESOURCE_EXHAUSTED = "resource_exhausted"
    OVERLOADED = "overloaded"
    TIMEOUT = "timeout"
    PROCESSING_ERROR = "processing_error"

    @property
    def category(self) -> ErrorCategory:
        if self in (ErrorKind.MALFORMED, ErrorKind.UNSUPPORTED, ErrorKind.TOO_LARGE):
            return ErrorCategory.CALLER
        if self is ErrorKind.PROCESSING_ERROR:
            return ErrorCategory.SYSTEMIC
        return ErrorCategory.TRANSIENT


class VisionError(RuntimeError):
    """Base for every error that can end a request."""

    kind: ErrorKind = ErrorKind.PROCESSING_ERROR

    def __init__(self, detail: str, **context: Any):
        super().__init__(detail)
        self.detail = detail
        self.context: Dict[str, Any] = context


class DecodeError(VisionError):
    def __init__(self, kind: ErrorKind, detail: str, **context: Any):
        if kind not in (ErrorKind.MALFORMED, ErrorKind.UNSUPPORTED, ErrorKind.TOO_LARGE):
            raise ValueError(f"Not a decode error kind: {kind}")
        super().__init__(detail, **context)
        self.kind = kind


class ResourceExhausted(VisionError):
    kind = ErrorKind.RESOURCE_EXHAUSTED


class Overloaded(VisionError):
    kind = ErrorKind.OVERLOADED


class RequestTimeout(VisionError):
    kind = ErrorKind.TIMEOUT


class ProcessingError(VisionError):
    kind = ErrorKind.PROCESSING_ERROR

    def __init__(self, stage: str, cause: Optional[BaseException] = None, detail: Optional[str] = None):
        message = detail or f"Stage '{stage}' failed: {cause}"
        super().__init__(message, stage=stage)
        self.stage = stage
        self.cause = cause


class ContextNotHeldError(RuntimeError):
    """Raised when native state is touched without a checked-out lease."""
