"""
Access to the process-wide VisionService.

The service is built once in the application lifespan and stored in
app_state; endpoints receive it through this dependency so tests can swap it
with app.dependency_overrides.
"""

from fastapi import HTTPException

from ...service import VisionService


def get_vision_service() -> VisionService:
    """FastAPI dependency to get the vision service from app state."""
    from ..main import app_state
    service = app_state.get("vision_service")
    if service is None or service.closed:
        raise HTTPException(status_code=503, detail="Vision service is not running")
    return service
