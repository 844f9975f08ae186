"""
Pydantic models for API request/response schemas.

These models define the wire format between callers and the service.
They are separate from the internal pipeline types to keep a clear API boundary.
"""
