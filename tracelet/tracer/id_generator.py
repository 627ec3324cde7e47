"""Trace and span identifier generation."""

from __future__ import annotations

import abc
import random

from tracelet.tracer.span_context import INVALID_SPAN_ID, INVALID_TRACE_ID


class IdGenerator(abc.ABC):
    @abc.abstractmethod
    def generate_span_id(self) -> int:
        """Return a new, non-zero 64-bit span id."""

    @abc.abstractmethod
    def generate_trace_id(self) -> int:
        """Return a new, non-zero 128-bit trace id."""


class RandomIdGenerator(IdGenerator):
    """
    Id generator backed by the module-level ``random`` generator.

    ``random.getrandbits`` is safe to call from multiple threads, and the
    interpreter reseeds it in forked children, so no locking is needed here.
    All-zero ids are invalid and are redrawn.
    """

    def generate_span_id(self) -> int:
        span_id = random.getrandbits(64)
        while span_id == INVALID_SPAN_ID:
            span_id = random.getrandbits(64)
        return span_id

    def generate_trace_id(self) -> int:
        trace_id = random.getrandbits(128)
        while trace_id == INVALID_TRACE_ID:
            trace_id = random.getrandbits(128)
        return trace_id
