"""
Shared API models: the error envelope, the base response and health status.

Every failed request leaves the service as an APIError. Its error_code is an
ErrorKind value, and its details name the request and tell the caller
whether to fix the input or retry later.
"""

from pydantic import BaseModel, Field
from typing import Dict, Literal, Optional
from datetime import datetime, timezone

from ...errors import ErrorCategory, ErrorKind


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ErrorDetails(BaseModel):
    """Where a failure happened and how to treat it."""
    request_id: str = Field(..., description="Request the failure belongs to")
    category: ErrorCategory = Field(..., description="caller: fix the input, transient: retry, systemic: service fault")
    stage: Optional[str] = Field(None, description="Pipeline stage that failed, for processing errors")

class APIError(BaseModel):
    """Error body returned with every 4xx/5xx from the vision routes."""
    error: str = Field(..., description="Human-readable failure detail")
    error_code: ErrorKind = Field(..., description="Machine-readable failure kind")
    details: Optional[ErrorDetails] = None
    timestamp: datetime = Field(default_factory=_utcnow)

class APIResponse(BaseModel):
    """Base response wrapper for successful calls."""
    success: bool = Field(..., description="Whether the request was successful")
    message: Optional[str] = Field(None, description="Human-readable response message")
    timestamp: datetime = Field(default_factory=_utcnow)

class HealthStatus(BaseModel):
    """Health check response."""
    status: Literal["healthy", "saturated"]
    version: str
    uptime: float = Field(..., description="Uptime in seconds")
    in_flight: int = Field(..., ge=0, description="Requests running or queued")
    capacity: int = Field(..., gt=0, description="pool_size + queue_bound")
    dependencies: Dict[str, str] = Field(..., description="Summary of the worker and native context pools")
