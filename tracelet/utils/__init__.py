"""Utility functions for Tracelet SDK."""

from tracelet.utils.helpers import (
    get_duration_ns,
    format_trace_id,
    format_span_id,
    time_ns,
)

__all__ = [
    "get_duration_ns",
    "format_trace_id",
    "format_span_id",
    "time_ns",
]
