"""
Configuration loader for the gateway.

Reads a gateway YAML file, validates it against GatewayConfig, and builds
the live objects it describes: backends, cache and pipeline.

Usage:
    from gateway.config.loader import build_pipeline, load_gateway_config

    config = load_gateway_config("gateway.yaml")
    pipeline = build_pipeline(config)
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import ValidationError

from gateway.backends import BACKEND_TYPES
from gateway.cache.disk import DiskCache
from gateway.cache.layered import LayeredCache
from gateway.cache.memory import MemoryCache
from gateway.config.schema import CacheType, GatewayConfig, InstrumentationType
from gateway.contracts.protocols import Backend, Cache
from gateway.exceptions import ConfigurationError
from gateway.pipeline import (
    DefaultCanonicalizer,
    HintRouter,
    LoggingInstrumentation,
    NoopInstrumentation,
    Pipeline,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "gateway.yaml"


def find_config_path(explicit: Optional[str | Path] = None) -> Path:
    """Explicit path, else $GATEWAY_CONFIG, else ./gateway.yaml."""
    return Path(explicit or os.environ.get("GATEWAY_CONFIG") or DEFAULT_CONFIG_FILE)


def parse_gateway_config(raw: dict[str, Any], *, source: str = "<dict>") -> GatewayConfig:
    try:
        return GatewayConfig(**raw)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid gateway config in {source}:\n{e}",
            context={"source": source},
        ) from e


def load_gateway_config(config_path: Optional[str | Path] = None) -> GatewayConfig:
    """
    Load and validate a gateway YAML file.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        ConfigurationError: If the file is empty or invalid.
    """
    path = find_config_path(config_path)
    if not path.exists():
        raise FileNotFoundError(
            f"Config not found: {path}\n"
            f"Create {DEFAULT_CONFIG_FILE} or set GATEWAY_CONFIG."
        )

    with open(path, "r") as f:
        raw = yaml.safe_load(f)

    if raw is None:
        raise ConfigurationError(f"Config file is empty: {path}", context={"source": str(path)})
    if not isinstance(raw, dict):
        raise ConfigurationError(
            f"Config file must contain a mapping: {path}", context={"source": str(path)}
        )

    config = parse_gateway_config(raw, source=str(path))
    logger.info(
        "gateway_config_loaded",
        extra={"path": str(path), "backends": sorted(config.backends), "cache": config.cache.type.value},
    )
    return config


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def build_backends(config: GatewayConfig) -> dict[str, Backend]:
    backends: dict[str, Backend] = {}
    for backend_id, entry in config.backends.items():
        backend_cls = BACKEND_TYPES[entry.type.value]
        backends[backend_id] = backend_cls(entry.config)
    return backends


def build_cache(config: GatewayConfig) -> Optional[Cache]:
    settings = config.cache
    if settings.type == CacheType.NONE:
        return None
    if settings.type == CacheType.MEMORY:
        return MemoryCache(settings.memory)
    if settings.type == CacheType.DISK:
        return DiskCache(settings.disk)
    return LayeredCache(
        MemoryCache(settings.memory),
        DiskCache(settings.disk),
        {"promote_on_hit": settings.promote_on_hit},
    )


def build_pipeline(
    config: GatewayConfig,
    *,
    backends: Optional[dict[str, Backend]] = None,
    cache: Optional[Cache] = None,
) -> Pipeline:
    """Assemble a Pipeline. Pass backends/cache to reuse existing instances."""
    backends = backends if backends is not None else build_backends(config)
    if cache is None:
        cache = build_cache(config)

    instrumentation = (
        LoggingInstrumentation()
        if config.instrumentation == InstrumentationType.LOGGING
        else NoopInstrumentation()
    )

    return Pipeline(
        backends=backends,
        canonicalizer=DefaultCanonicalizer(config.default_parameters),
        cache=cache,
        router=HintRouter(backends, default=config.default_backend),
        instrumentation=instrumentation,
        cache_ttl=config.cache.ttl,
    )
