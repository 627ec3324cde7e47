"""Span processor that logs spans when they end."""

from __future__ import annotations

import logging
from typing import Optional

from tracelet.tracer.provider import SpanProcessor
from tracelet.tracer.span import ReadableSpan


class LoggingSpanProcessor(SpanProcessor):
    """Logs span summary on end using the standard logging module."""

    def __init__(self, logger: Optional[logging.Logger] = None, level: int = logging.INFO) -> None:
        self.logger = logger or logging.getLogger("tracelet.traces")
        self.level = level

    def on_end(self, span: ReadableSpan) -> None:
        if not self.logger.isEnabledFor(self.level):
            return
        attrs = dict(span.attributes)
        msg = (
            f"[trace] name={span.name} trace_id={span.context.trace_id_hex} "
            f"span_id={span.context.span_id_hex} sampled={span.context.sampled} "
            f"status={span.status.name} duration_ns={span.duration_ns} attrs={attrs}"
        )
        self.logger.log(self.level, msg)
