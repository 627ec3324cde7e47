"""Span exporter interface."""

from __future__ import annotations

import abc
import enum
from typing import Optional, Sequence

from tracelet.tracer.span import ReadableSpan


class SpanExportResult(enum.Enum):
    SUCCESS = 0
    FAILURE = 1


class SpanExporter(abc.ABC):
    """
    Transmits batches of ended spans to a backend.

    ``export`` applies its own timeout and any retry policy, and reports a
    single result for the whole batch. Once ``shutdown`` has been called,
    ``export`` must return FAILURE without transmitting. BatchSpanProcessor
    never calls ``export`` on one instance from two threads at once.
    """

    @abc.abstractmethod
    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        """Export a batch of spans."""

    def shutdown(self) -> None:
        """Release resources. Later exports fail."""

    def force_flush(self, timeout: Optional[float] = None) -> bool:
        """Flush anything the exporter itself buffers."""
        return True
