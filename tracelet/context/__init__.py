"""Context utilities for the tracing SDK."""

from tracelet.context.context import (
    get_current_span,
    pop_span,
    push_span,
    set_span_in_context,
    use_span,
)
from tracelet.context.baggage import (
    clear as clear_baggage,
    get_all as get_all_baggage,
    get_baggage,
    remove_baggage,
    set_baggage,
)
from tracelet.context.propagators import (
    CompositePropagator,
    TextMapPropagator,
    TraceContextPropagator,
    W3CBaggagePropagator,
    extract,
    extract_trace_context,
    format_traceparent,
    format_tracestate,
    get_global_textmap,
    inject,
    parse_traceparent,
    parse_tracestate,
    set_global_textmap,
)

__all__ = [
    "get_current_span",
    "set_span_in_context",
    "push_span",
    "pop_span",
    "use_span",
    "get_baggage",
    "get_all_baggage",
    "set_baggage",
    "remove_baggage",
    "clear_baggage",
    "TextMapPropagator",
    "TraceContextPropagator",
    "W3CBaggagePropagator",
    "CompositePropagator",
    "get_global_textmap",
    "set_global_textmap",
    "format_traceparent",
    "parse_traceparent",
    "format_tracestate",
    "parse_tracestate",
    "extract_trace_context",
    "inject",
    "extract",
]
