"""
Health check endpoints for monitoring and diagnostics.

These endpoints report the state of the worker pool and the native context
pool so load balancers and operators can see saturation.
"""

import time
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from datetime import datetime, timezone

from ..models.common import HealthStatus
from ..dependencies.service import get_vision_service
from ... import __version__
from ...service import VisionService

router = APIRouter()

# Track server start time for uptime calculation
_server_start_time = time.time()

@router.get("/", response_model=HealthStatus)
async def health_check(service: VisionService = Depends(get_vision_service)):
    """
    Basic health check endpoint.

    Returns the status of the API and its internal components.
    """
    uptime = time.time() - _server_start_time
    stats = service.get_stats()
    dispatcher = stats["dispatcher"]
    contexts = stats["contexts"]

    dependencies = {
        "dispatcher": f"{dispatcher['running']}/{dispatcher['pool_size']} running, {dispatcher['pending']}/{dispatcher['queue_bound']} queued",
        "native_contexts": f"{contexts['in_use']}/{contexts['capacity']} in use ({contexts['created']} created)",
    }
    capacity = service.dispatcher.capacity

    return HealthStatus(
        status="saturated" if dispatcher["in_flight"] >= capacity else "healthy",
        version=__version__,
        uptime=uptime,
        in_flight=dispatcher["in_flight"],
        capacity=capacity,
        dependencies=dependencies,
    )

@router.get("/detailed")
async def detailed_health_check(service: VisionService = Depends(get_vision_service)):
    """
    Detailed health check with pool and slot statistics.
    """
    uptime = time.time() - _server_start_time
    stats = service.get_stats()
    pool_cfg = service.config.pool

    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime_seconds": uptime,
        "uptime_human": f"{uptime//3600:.0f}h {(uptime%3600)//60:.0f}m {uptime%60:.0f}s",
        "config": {
            "pool_size": pool_cfg.pool_size,
            "queue_bound": pool_cfg.queue_bound,
            "request_timeout_s": pool_cfg.request_timeout_s,
            "acquire_timeout_s": pool_cfg.acquire_timeout_s,
            "max_payload_bytes": service.config.decoder.max_payload_bytes,
        },
        "dispatcher": stats["dispatcher"],
        "contexts": stats["contexts"],
        "stages": service.pipeline.stage_names,
    }

@router.get("/ready")
async def readiness_check(service: VisionService = Depends(get_vision_service)):
    """
    Readiness check for container deployments.

    Returns 200 while the dispatcher can admit work, 503 once it is saturated.
    """
    stats = service.dispatcher.get_stats()
    if stats["in_flight"] >= service.dispatcher.capacity:
        return JSONResponse(status_code=503, content={"ready": False, "reason": "Dispatcher saturated"})
    return {"ready": True, "message": "Service ready to handle requests"}
