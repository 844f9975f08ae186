#!/usr/bin/env python3
"""
Server launcher for the visionpool API.

Reads config/config.yaml (or VISIONPOOL_CONFIG) plus VISIONPOOL_* env
overrides and starts uvicorn on the configured host and port.
"""

import logging

import uvicorn

from visionpool.config import load_config

if __name__ == "__main__":
    config = load_config()
    logging.basicConfig(
        level=config.server.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger(__name__).info(
        f"Starting visionpool on http://{config.server.host}:{config.server.port} (docs at /docs)"
    )

    # Single process: the worker pool and native contexts live in-process
    uvicorn.run(
        "visionpool.api.main:app",
        host=config.server.host,
        port=config.server.port,
        workers=1,
        log_level=config.server.log_level.lower(),
    )
