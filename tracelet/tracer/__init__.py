"""Tracer components for the tracing SDK."""

# Import order matters: the data model must be loaded before anything that
# touches tracelet.context.
from tracelet.tracer.trace_state import TraceState
from tracelet.tracer.span_context import INVALID_SPAN_CONTEXT, SpanContext, TraceFlags
from tracelet.tracer.span import (
    Event,
    Link,
    NonRecordingSpan,
    ReadableSpan,
    Span,
    SpanKind,
    SpanLimits,
    SpanStatus,
)
from tracelet.tracer.id_generator import IdGenerator, RandomIdGenerator
from tracelet.tracer.sampling import (
    ALWAYS_OFF,
    ALWAYS_ON,
    AlwaysOffSampler,
    AlwaysOnSampler,
    Decision,
    ParentBased,
    ParentBasedTraceIdRatio,
    Sampler,
    SamplingResult,
    TraceIdRatioBased,
    sampler_from_name,
)
from tracelet.tracer.provider import (
    SpanProcessor,
    SynchronousMultiSpanProcessor,
    TracerProvider,
    get_tracer_provider,
    set_tracer_provider,
    shutdown_tracer_provider,
)
from tracelet.tracer.tracer import NoOpTracer, Tracer

__all__ = [
    "TraceState",
    "TraceFlags",
    "SpanContext",
    "INVALID_SPAN_CONTEXT",
    "Event",
    "Link",
    "Span",
    "NonRecordingSpan",
    "ReadableSpan",
    "SpanKind",
    "SpanLimits",
    "SpanStatus",
    "IdGenerator",
    "RandomIdGenerator",
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
    "sampler_from_name",
    "SpanProcessor",
    "SynchronousMultiSpanProcessor",
    "Tracer",
    "NoOpTracer",
    "TracerProvider",
    "get_tracer_provider",
    "set_tracer_provider",
    "shutdown_tracer_provider",
]
