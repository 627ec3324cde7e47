"""
SDK configuration.

Settings are layered, later sources winning: TOML config file, then
``TRACELET_*`` environment variables, then explicit overrides. The merged
result is validated by pydantic; any problem surfaces as ConfigError so a
misconfigured SDK fails at startup instead of degrading silently.
"""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Any, Dict, Literal, Optional, Tuple
from urllib.parse import urlparse

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from tracelet.errors import ConfigError
from tracelet.tracer.sampling import Sampler, sampler_from_name
from tracelet.tracer.span import SpanLimits

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "tracelet.toml"
HOME_CONFIG_PATH = Path.home() / ".tracelet" / "config.toml"

SAMPLER_NAMES = (
    "always_on",
    "always_off",
    "traceidratio",
    "parentbased_always_on",
    "parentbased_always_off",
    "parentbased_traceidratio",
)

# env var -> (section, field)
ENV_VARS: Dict[str, Tuple[str, str]] = {
    "TRACELET_SERVICE_NAME": ("tracing", "service_name"),
    "TRACELET_SERVICE_VERSION": ("tracing", "service_version"),
    "TRACELET_SAMPLER": ("tracing", "sampler"),
    "TRACELET_SAMPLER_ARG": ("tracing", "sampler_arg"),
    "TRACELET_EXPORTER": ("exporter", "type"),
    "TRACELET_ENDPOINT": ("exporter", "endpoint"),
    "TRACELET_API_KEY": ("exporter", "api_key"),
    "TRACELET_EXPORTER_TIMEOUT": ("exporter", "timeout"),
    "TRACELET_BSP_MAX_QUEUE_SIZE": ("batch", "max_queue_size"),
    "TRACELET_BSP_SCHEDULE_DELAY": ("batch", "schedule_delay_millis"),
    "TRACELET_BSP_MAX_EXPORT_BATCH_SIZE": ("batch", "max_export_batch_size"),
    "TRACELET_BSP_EXPORT_TIMEOUT": ("batch", "export_timeout_millis"),
    "TRACELET_DEBUG": ("logging", "debug"),
}


class TracingConfig(BaseModel):
    service_name: str = "unknown_service"
    service_version: Optional[str] = None
    sampler: str = "parentbased_always_on"
    sampler_arg: Optional[float] = None
    max_attributes: int = Field(128, ge=0)
    max_events: int = Field(128, ge=0)
    max_links: int = Field(128, ge=0)
    max_event_attributes: int = Field(128, ge=0)
    max_link_attributes: int = Field(128, ge=0)
    max_attribute_length: Optional[int] = Field(None, ge=0)

    @field_validator("sampler")
    @classmethod
    def check_sampler(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in SAMPLER_NAMES:
            raise ValueError(f"unknown sampler {value!r}; expected one of {', '.join(SAMPLER_NAMES)}")
        return value

    @field_validator("sampler_arg")
    @classmethod
    def check_sampler_arg(cls, value: Optional[float]) -> Optional[float]:
        if value is not None and not 0.0 <= value <= 1.0:
            raise ValueError("sampler_arg must be between 0.0 and 1.0")
        return value


class ExporterConfig(BaseModel):
    type: Literal["console", "otlp", "none"] = "console"
    endpoint: Optional[str] = None
    api_key: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    timeout: float = Field(10.0, gt=0)

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("endpoint")
    @classmethod
    def check_endpoint(cls, value: Optional[str]) -> Optional[str]:
        if value is None or value == "":
            return None
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"malformed endpoint {value!r}; expected an http(s) URL")
        return value


class BatchConfig(BaseModel):
    max_queue_size: int = Field(2048, gt=0)
    schedule_delay_millis: int = Field(5000, gt=0)
    max_export_batch_size: int = Field(512, gt=0)
    export_timeout_millis: int = Field(30000, gt=0)
    use_simple_processor: bool = False

    @model_validator(mode="after")
    def check_batch_fits_queue(self) -> "BatchConfig":
        if "max_export_batch_size" not in self.model_fields_set:
            # Shrinking only the queue shrinks the default batch with it.
            self.max_export_batch_size = min(self.max_export_batch_size, self.max_queue_size)
        elif self.max_export_batch_size > self.max_queue_size:
            raise ValueError("max_export_batch_size must not exceed max_queue_size")
        return self


class LoggingConfig(BaseModel):
    debug: bool = False


class SDKConfig(BaseModel):
    tracing: TracingConfig = Field(default_factory=TracingConfig)
    exporter: ExporterConfig = Field(default_factory=ExporterConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def find_config_file() -> Optional[str]:
    """Return ``./tracelet.toml`` or ``~/.tracelet/config.toml``, whichever exists first."""
    local = Path.cwd() / CONFIG_FILE_NAME
    if local.is_file():
        return str(local)
    if HOME_CONFIG_PATH.is_file():
        return str(HOME_CONFIG_PATH)
    return None


def load_toml_config(path: str) -> Dict[str, Any]:
    """
    Load a TOML config file.

    Returns an empty dict if the file does not exist.

    Raises:
        ConfigError: if the file is not valid TOML
    """
    file_path = Path(path)
    if not file_path.is_file():
        return {}
    try:
        with file_path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError("Invalid TOML config file", {"path": path, "error": e}) from e


def load_env_config(environ: Optional[Dict[str, str]] = None) -> Dict[str, Dict[str, str]]:
    """Collect ``TRACELET_*`` variables into the nested config shape."""
    environ = os.environ if environ is None else environ
    result: Dict[str, Dict[str, str]] = {}
    for var, (section, key) in ENV_VARS.items():
        value = environ.get(var)
        if value is not None and value != "":
            result.setdefault(section, {})[key] = value
    return result


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(
    config_file: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> SDKConfig:
    """
    Load and validate configuration. Priority: overrides > env > file.

    Raises:
        ConfigError: on unreadable files or any invalid setting
    """
    path = config_file or find_config_file()
    data: Dict[str, Any] = load_toml_config(path) if path else {}
    data = _deep_merge(data, load_env_config())
    if overrides:
        data = _deep_merge(data, overrides)
    try:
        return SDKConfig.model_validate(data)
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigError("Invalid tracelet configuration", {"errors": errors}) from e


def validate_config(
    config_file: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> Tuple[bool, str, Optional[SDKConfig]]:
    """Like :func:`load_config` but reports problems instead of raising."""
    try:
        config = load_config(config_file=config_file, overrides=overrides)
    except ConfigError as e:
        return False, str(e), None
    return True, "ok", config


def build_sampler(config: SDKConfig) -> Sampler:
    try:
        return sampler_from_name(config.tracing.sampler, config.tracing.sampler_arg)
    except ValueError as e:
        raise ConfigError(str(e), {"sampler": config.tracing.sampler}) from e


def build_span_limits(config: SDKConfig) -> SpanLimits:
    tracing = config.tracing
    try:
        return SpanLimits(
            max_attributes=tracing.max_attributes,
            max_events=tracing.max_events,
            max_links=tracing.max_links,
            max_event_attributes=tracing.max_event_attributes,
            max_link_attributes=tracing.max_link_attributes,
            max_attribute_length=tracing.max_attribute_length,
        )
    except ValueError as e:
        raise ConfigError(str(e)) from e


def build_exporter(config: SDKConfig):
    """Return the configured SpanExporter, or None for ``type = "none"``."""
    exporter = config.exporter
    if exporter.type == "none":
        return None
    if exporter.type == "console":
        from tracelet.exporter.console_exporter import ConsoleExporter

        return ConsoleExporter()
    from tracelet.exporter.otlp_exporter import OTLPExporter

    return OTLPExporter(
        endpoint=exporter.endpoint,
        api_key=exporter.api_key,
        timeout=exporter.timeout,
        headers=exporter.headers,
    )


def build_tracer_provider(config: SDKConfig):
    """
    Construct a fully wired TracerProvider from ``config``.

    Raises:
        ConfigError: if any component rejects its settings
    """
    from tracelet.processors.batch_processor import BatchSpanProcessor
    from tracelet.processors.logging_processor import LoggingSpanProcessor
    from tracelet.processors.simple_processor import SimpleSpanProcessor
    from tracelet.tracer.provider import TracerProvider

    resource = {"service.name": config.tracing.service_name}
    if config.tracing.service_version:
        resource["service.version"] = config.tracing.service_version

    provider = TracerProvider(
        sampler=build_sampler(config),
        resource=resource,
        span_limits=build_span_limits(config),
    )

    if config.logging.debug:
        logging.getLogger("tracelet").setLevel(logging.DEBUG)
        provider.add_span_processor(LoggingSpanProcessor(level=logging.DEBUG))

    exporter = build_exporter(config)
    if exporter is not None:
        batch = config.batch
        if batch.use_simple_processor:
            provider.add_span_processor(SimpleSpanProcessor(exporter))
        else:
            try:
                processor = BatchSpanProcessor(
                    exporter,
                    max_queue_size=batch.max_queue_size,
                    max_export_batch_size=batch.max_export_batch_size,
                    schedule_delay_millis=batch.schedule_delay_millis,
                    export_timeout_millis=batch.export_timeout_millis,
                )
            except ValueError as e:
                raise ConfigError(str(e)) from e
            provider.add_span_processor(processor)
    return provider
