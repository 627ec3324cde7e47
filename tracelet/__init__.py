"""tracelet: a distributed tracing SDK with W3C propagation, head and tail sampling."""

from __future__ import annotations

__version__ = "0.1.0"

# The tracer package must load before context (see tracelet/tracer/__init__.py).
from tracelet.tracer import (
    ALWAYS_OFF,
    ALWAYS_ON,
    INVALID_SPAN_CONTEXT,
    AlwaysOffSampler,
    AlwaysOnSampler,
    Decision,
    IdGenerator,
    Link,
    NonRecordingSpan,
    ParentBased,
    ParentBasedTraceIdRatio,
    RandomIdGenerator,
    ReadableSpan,
    Sampler,
    SamplingResult,
    Span,
    SpanContext,
    SpanKind,
    SpanLimits,
    SpanProcessor,
    SpanStatus,
    TraceFlags,
    TraceIdRatioBased,
    TraceState,
    Tracer,
    TracerProvider,
    get_tracer_provider,
    set_tracer_provider,
    shutdown_tracer_provider,
)
from tracelet.context import (
    CompositePropagator,
    TraceContextPropagator,
    W3CBaggagePropagator,
    extract,
    get_baggage,
    get_current_span,
    inject,
    set_baggage,
    use_span,
)
from tracelet.errors import ConfigError, TraceletError
from tracelet.exporter import (
    ConsoleExporter,
    InMemorySpanExporter,
    OTLPExporter,
    SpanExporter,
    SpanExportResult,
)
from tracelet.processors import BatchSpanProcessor, SimpleSpanProcessor
from tracelet.auto import get_tracer, init, start_tracing, stop_tracing
from tracelet.instrumentation import observe

__all__ = [
    "__version__",
    # lifecycle
    "init",
    "start_tracing",
    "stop_tracing",
    "get_tracer",
    "get_tracer_provider",
    "set_tracer_provider",
    "shutdown_tracer_provider",
    "observe",
    # data model
    "Span",
    "NonRecordingSpan",
    "ReadableSpan",
    "SpanContext",
    "INVALID_SPAN_CONTEXT",
    "SpanKind",
    "SpanStatus",
    "SpanLimits",
    "Link",
    "TraceFlags",
    "TraceState",
    "IdGenerator",
    "RandomIdGenerator",
    "Tracer",
    "TracerProvider",
    # sampling
    "Sampler",
    "SamplingResult",
    "Decision",
    "ALWAYS_ON",
    "ALWAYS_OFF",
    "AlwaysOnSampler",
    "AlwaysOffSampler",
    "TraceIdRatioBased",
    "ParentBased",
    "ParentBasedTraceIdRatio",
    # pipeline
    "SpanProcessor",
    "SimpleSpanProcessor",
    "BatchSpanProcessor",
    "SpanExporter",
    "SpanExportResult",
    "InMemorySpanExporter",
    "ConsoleExporter",
    "OTLPExporter",
    # propagation
    "inject",
    "extract",
    "get_current_span",
    "use_span",
    "get_baggage",
    "set_baggage",
    "TraceContextPropagator",
    "W3CBaggagePropagator",
    "CompositePropagator",
    # errors
    "TraceletError",
    "ConfigError",
]
