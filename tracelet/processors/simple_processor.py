"""Span processor that exports each span synchronously as it ends."""

from __future__ import annotations

import logging
from typing import Optional

from tracelet.exporter.base import SpanExporter
from tracelet.tracer.provider import SpanProcessor
from tracelet.tracer.span import ReadableSpan

logger = logging.getLogger(__name__)


class SimpleSpanProcessor(SpanProcessor):
    """
    Exports every sampled span as a one-span batch from ``on_end``.

    The ending thread blocks for the whole export; meant for debugging and
    tests, not production traffic.
    """

    def __init__(self, exporter: SpanExporter) -> None:
        self.exporter = exporter

    def on_end(self, span: ReadableSpan) -> None:
        if not span.context.sampled:
            return
        try:
            self.exporter.export((span,))
        except Exception:
            logger.exception("Exception while exporting span.")

    def shutdown(self) -> None:
        self.exporter.shutdown()

    def force_flush(self, timeout: Optional[float] = None) -> bool:
        return True
