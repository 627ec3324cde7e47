"""Exporter that keeps spans in memory. Used in tests and for local inspection."""

from __future__ import annotations

import threading
from typing import List, Optional, Sequence, Tuple

from tracelet.exporter.base import SpanExporter, SpanExportResult
from tracelet.tracer.span import ReadableSpan


class InMemorySpanExporter(SpanExporter):
    def __init__(self) -> None:
        self._finished_spans: List[ReadableSpan] = []
        self._export_calls: List[Tuple[ReadableSpan, ...]] = []
        self._lock = threading.Lock()
        self._stopped = False

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        if self._stopped:
            return SpanExportResult.FAILURE
        batch = tuple(spans)
        with self._lock:
            self._finished_spans.extend(batch)
            self._export_calls.append(batch)
        return SpanExportResult.SUCCESS

    def get_finished_spans(self) -> Tuple[ReadableSpan, ...]:
        with self._lock:
            return tuple(self._finished_spans)

    @property
    def export_calls(self) -> Tuple[Tuple[ReadableSpan, ...], ...]:
        """Every batch received, in order."""
        with self._lock:
            return tuple(self._export_calls)

    def clear(self) -> None:
        with self._lock:
            self._finished_spans.clear()
            self._export_calls.clear()

    def shutdown(self) -> None:
        self._stopped = True

    def force_flush(self, timeout: Optional[float] = None) -> bool:
        return True
