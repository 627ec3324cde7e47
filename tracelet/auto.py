"""Process-level tracing lifecycle: init()/start_tracing() and stop_tracing()."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from tracelet.config import build_tracer_provider, load_config
from tracelet.tracer.provider import (
    TracerProvider,
    get_tracer_provider,
    set_tracer_provider,
    shutdown_tracer_provider,
)

logger = logging.getLogger(__name__)


def start_tracing(
    config_file: Optional[str] = None,
    *,
    service_name: Optional[str] = None,
    sampler: Optional[str] = None,
    sampler_arg: Optional[float] = None,
    exporter: Optional[str] = None,
    endpoint: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> TracerProvider:
    """
    Build a TracerProvider from configuration and install it globally.

    Keyword arguments take priority over ``overrides``, which take priority
    over the environment and the config file. If tracing is already
    started, the existing provider is returned unchanged.

    Raises:
        ConfigError: if the configuration is invalid
    """
    current = get_tracer_provider()
    if isinstance(current, TracerProvider):
        logger.warning("Tracing is already initialized; returning the existing provider.")
        return current

    merged: Dict[str, Any] = {k: dict(v) if isinstance(v, dict) else v for k, v in (overrides or {}).items()}
    explicit = {
        ("tracing", "service_name"): service_name,
        ("tracing", "sampler"): sampler,
        ("tracing", "sampler_arg"): sampler_arg,
        ("exporter", "type"): exporter,
        ("exporter", "endpoint"): endpoint,
    }
    for (section, key), value in explicit.items():
        if value is not None:
            merged.setdefault(section, {})[key] = value

    config = load_config(config_file=config_file, overrides=merged)
    provider = build_tracer_provider(config)
    if not set_tracer_provider(provider):
        # Lost a race with another initializer.
        provider.shutdown()
        return get_tracer_provider()
    logger.debug(
        f"Tracing started: service={config.tracing.service_name} "
        f"sampler={provider.sampler.get_description()} exporter={config.exporter.type}"
    )
    return provider


init = start_tracing


def stop_tracing(timeout: Optional[float] = None) -> None:
    """Flush, shut down and clear the global provider."""
    provider = get_tracer_provider()
    if isinstance(provider, TracerProvider):
        provider.force_flush(timeout)
    shutdown_tracer_provider()


def get_tracer(name: str, version: Optional[str] = None):
    """Get a tracer from the global provider."""
    return get_tracer_provider().get_tracer(name, version)
