"""Helper functions for identifier formatting and timestamps."""

from __future__ import annotations

import time
from typing import Optional


def time_ns() -> int:
    """Current wall-clock time in nanoseconds since the epoch."""
    return time.time_ns()


def get_duration_ns(start_time: Optional[int], end_time: Optional[int]) -> Optional[int]:
    """
    Get span duration in nanoseconds.

    Returns:
        Duration in nanoseconds, or None if the span hasn't ended
    """
    if start_time is None or end_time is None:
        return None
    return end_time - start_time


def format_trace_id(trace_id: int) -> str:
    """
    Format a 128-bit trace_id as hex.

    Returns:
        32-character lowercase hex string
    """
    return format(trace_id, "032x")


def format_span_id(span_id: int) -> str:
    """
    Format a 64-bit span_id as hex.

    Returns:
        16-character lowercase hex string
    """
    return format(span_id, "016x")

