"""Console exporter for developer visibility."""

from __future__ import annotations

import json
import sys
from typing import Callable, Optional, Sequence

from tracelet.exporter.base import SpanExporter, SpanExportResult
from tracelet.tracer.span import ReadableSpan


def _default_formatter(span: ReadableSpan) -> str:
    line = (
        f"[span] name={span.name} trace_id={span.context.trace_id_hex} "
        f"span_id={span.context.span_id_hex} status={span.status.name} "
        f"duration_ns={span.duration_ns}"
    )
    if span.attributes:
        line += f" attrs={dict(span.attributes)}"
    return line


def json_formatter(span: ReadableSpan) -> str:
    return json.dumps(span.to_dict(), default=str)


class ConsoleExporter(SpanExporter):
    """Simple exporter that prints spans to stdout (or provided stream)."""

    def __init__(
        self,
        stream=None,
        formatter: Optional[Callable[[ReadableSpan], str]] = None,
    ) -> None:
        self.stream = stream or sys.stdout
        self.formatter = formatter or _default_formatter
        self._stopped = False

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        if self._stopped:
            return SpanExportResult.FAILURE
        for span in spans:
            print(self.formatter(span), file=self.stream)
        self.stream.flush()
        return SpanExportResult.SUCCESS

    def shutdown(self) -> None:
        self._stopped = True
