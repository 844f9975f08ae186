from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union
import logging
import os

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parents[2] / "config" / "config.yaml"
CONFIG_ENV_VAR = "VISIONPOOL_CONFIG"


class _Section(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class ServerConfig(_Section):
    host: str = "0.0.0.0"
    port: int = Field(8000, gt=0, lt=65536)
    log_level: str = "info"


class PoolConfig(_Section):
    pool_size: int = Field(2, ge=1)
    queue_bound: int = Field(8, ge=0)
    request_timeout_s: float = Field(10.0, gt=0)
    acquire_timeout_s: float = Field(5.0, gt=0)
    admission_timeout_s: float = Field(0.0, ge=0)  #0 -> reject immediately when saturated


class DecoderConfig(_Section):
    max_payload_bytes: int = Field(10 * 1024 * 1024, gt=0)
    max_dimension: int = Field(8192, gt=0)
    max_pixels: int = Field(40_000_000, gt=0)


class PipelineConfig(_Section):
    working_size: int = Field(1024, ge=16)
    clahe_clip_limit: float = Field(2.0, gt=0)
    clahe_tile_size: int = Field(8, ge=1)
    blur_kernel: int = Field(5, ge=1)
    canny_low: int = Field(50, ge=0)
    canny_high: int = Field(150, ge=0)
    morph_kernel: int = Field(3, ge=1)
    min_score: float = Field(0.5, ge=0.0, le=1.0)
    min_area_fraction: float = Field(0.001, ge=0.0, lt=1.0)
    max_regions: int = Field(100, ge=1)
    include_image: bool = False

    @field_validator("blur_kernel")
    @classmethod
    def _odd_kernel(cls, value: int) -> int:
        if value % 2 == 0:
            raise ValueError("must be odd for GaussianBlur")
        return value

    @model_validator(mode="after")
    def _canny_order(self) -> "PipelineConfig":
        if self.canny_low >= self.canny_high:
            raise ValueError("canny_low must be below canny_high")
        return self


class ServiceConfig(_Section):
    server: ServerConfig = Field(default_factory=ServerConfig)
    pool: PoolConfig = Field(default_factory=PoolConfig)
    decoder: DecoderConfig = Field(default_factory=DecoderConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)


#env var -> (section, key)
ENV_OVERRIDES = {
    "VISIONPOOL_HOST": ("server", "host"),
    "VISIONPOOL_PORT": ("server", "port"),
    "VISIONPOOL_LOG_LEVEL": ("server", "log_level"),
    "VISIONPOOL_POOL_SIZE": ("pool", "pool_size"),
    "VISIONPOOL_QUEUE_BOUND": ("pool", "queue_bound"),
    "VISIONPOOL_TIMEOUT": ("pool", "request_timeout_s"),
    "VISIONPOOL_ACQUIRE_TIMEOUT": ("pool", "acquire_timeout_s"),
    "VISIONPOOL_ADMISSION_TIMEOUT": ("pool", "admission_timeout_s"),
    "VISIONPOOL_MAX_PAYLOAD": ("decoder", "max_payload_bytes"),
    "VISIONPOOL_MAX_DIMENSION": ("decoder", "max_dimension"),
}


def _format_errors(e: ValidationError) -> str:
    parts = []
    for error in e.errors():
        location = ".".join(str(part) for part in error["loc"]) or "config"
        parts.append(f"{location}: {error['msg']}")
    return "; ".join(parts)


def config_from_dict(raw: Optional[Mapping[str, Any]]) -> ServiceConfig:
    """Validate a raw mapping (YAML content) into a ServiceConfig."""
    try:
        return ServiceConfig.model_validate(raw or {})
    except ValidationError as e:
        raise ValueError(f"Invalid config: {_format_errors(e)}") from e


def env_overrides(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Dict[str, str]]:
    """VISIONPOOL_* variables as a nested {section: {key: raw string}} dict."""
    environ = os.environ if environ is None else environ
    overrides: Dict[str, Dict[str, str]] = {}
    for env_name, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value is None or value == "":
            continue
        overrides.setdefault(section, {})[key] = value
        logger.info(f"config override from {env_name}: {section}.{key}")
    return overrides


def _merge(raw: Mapping[str, Any], overrides: Mapping[str, Dict[str, str]]) -> Dict[str, Any]:
    merged: Dict[str, Any] = dict(raw)
    for section, values in overrides.items():
        current = merged.get(section) or {}
        if isinstance(current, BaseModel):
            current = current.model_dump()
        if not isinstance(current, Mapping):
            # leave it for validation to reject
            continue
        merged[section] = {**current, **values}
    return merged


def apply_env_overrides(config: ServiceConfig, environ: Optional[Mapping[str, str]] = None) -> ServiceConfig:
    overrides = env_overrides(environ)
    if not overrides:
        return config
    return config_from_dict(_merge(config.model_dump(), overrides))


def load_config(config_path: Optional[Union[Path, str]] = None, environ: Optional[Mapping[str, str]] = None) -> ServiceConfig:
    """
    Load the service config from YAML, then apply VISIONPOOL_* env overrides.

    An explicitly given path (argument or VISIONPOOL_CONFIG) must exist.
    The bundled default path is optional and falls back to built-in defaults.
    """
    environ = os.environ if environ is None else environ
    explicit = config_path or environ.get(CONFIG_ENV_VAR)
    path = Path(explicit) if explicit else DEFAULT_CONFIG_PATH

    raw: Any = {}
    if path.exists():
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
        logger.info(f"loaded config from {path}")
    elif explicit:
        raise FileNotFoundError(f"Config not found: {path}")
    else:
        logger.info("no config file found, using defaults")

    if not isinstance(raw, Mapping):
        raise ValueError(f"Config root must be a mapping, got {type(raw).__name__}")
    return config_from_dict(_merge(raw, env_overrides(environ)))
