"""Trace-id aware routing in front of the tail sampling tier."""

from __future__ import annotations

import hashlib
import logging
from bisect import bisect_left
from collections import OrderedDict
from typing import Dict, List, Mapping, Optional, Sequence

from tracelet.exporter.base import SpanExporter, SpanExportResult
from tracelet.tracer.span import ReadableSpan
from tracelet.utils.helpers import format_trace_id

logger = logging.getLogger(__name__)


class TraceIdLoadBalancingExporter(SpanExporter):
    """
    Routes each span to one of several backends by consistent hash of its trace id.

    Every span of a trace lands on the same backend, which tail sampling
    needs to see whole traces. Adding or removing a backend only remaps the
    traces on its share of the ring.
    """

    def __init__(self, exporters: Mapping[str, SpanExporter], replicas: int = 100) -> None:
        if not exporters:
            raise ValueError("TraceIdLoadBalancingExporter needs at least one backend")
        if replicas < 1:
            raise ValueError("replicas must be at least 1")
        self.replicas = replicas
        self._exporters: Dict[str, SpanExporter] = dict(exporters)
        self._ring: List[int] = []
        self._ring_map: Dict[int, str] = {}
        self._stopped = False
        self._rebuild_ring()

    @staticmethod
    def _hash(key: str) -> int:
        return int(hashlib.md5(key.encode()).hexdigest(), 16)  # nosec B324 - consistent hashing

    def _rebuild_ring(self) -> None:
        self._ring = []
        self._ring_map = {}
        for name in self._exporters:
            for i in range(self.replicas):
                hash_val = self._hash(f"{name}:{i}")
                self._ring.append(hash_val)
                self._ring_map[hash_val] = name
        self._ring.sort()

    @property
    def backends(self) -> Sequence[str]:
        return tuple(self._exporters)

    def backend_for(self, trace_id: int) -> str:
        """Name of the backend that owns ``trace_id``."""
        idx = bisect_left(self._ring, self._hash(format_trace_id(trace_id)))
        if idx >= len(self._ring):
            idx = 0
        return self._ring_map[self._ring[idx]]

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        if self._stopped:
            return SpanExportResult.FAILURE
        routed: "OrderedDict[str, List[ReadableSpan]]" = OrderedDict()
        for span in spans:
            routed.setdefault(self.backend_for(span.context.trace_id), []).append(span)

        result = SpanExportResult.SUCCESS
        for name, batch in routed.items():
            try:
                if self._exporters[name].export(batch) is not SpanExportResult.SUCCESS:
                    logger.warning(f"Backend {name!r} failed to export {len(batch)} spans")
                    result = SpanExportResult.FAILURE
            except Exception:
                logger.exception(f"Backend {name!r} raised while exporting")
                result = SpanExportResult.FAILURE
        return result

    def shutdown(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        for name, exporter in self._exporters.items():
            try:
                exporter.shutdown()
            except Exception:
                logger.exception(f"Backend {name!r} failed to shut down")

    def force_flush(self, timeout: Optional[float] = None) -> bool:
        flushed = True
        for exporter in self._exporters.values():
            if not exporter.force_flush(timeout):
                flushed = False
        return flushed
