"""
Tail sampling: buffer whole traces and decide after they have completed.

This runs in an aggregation tier downstream of per-process exporters. All
spans of a trace must reach the same instance, which is what
:class:`~tracelet.tailsampling.loadbalancer.TraceIdLoadBalancingExporter`
guarantees upstream.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from typing import List, Optional, Sequence

from tracelet.exporter.base import SpanExporter, SpanExportResult
from tracelet.tailsampling.policies import Policy
from tracelet.tracer.provider import SpanProcessor
from tracelet.tracer.span import ReadableSpan

logger = logging.getLogger(__name__)


class _TraceBuffer:
    __slots__ = ["first_seen", "spans"]

    def __init__(self, first_seen: float) -> None:
        self.first_seen = first_seen
        self.spans: List[ReadableSpan] = []


class TailSamplingProcessor(SpanProcessor):
    """
    Holds spans per trace id and forwards whole traces that a policy keeps.

    A trace is decided when the oldest of its spans has waited
    ``decision_wait_millis``, when :meth:`complete_trace` is called for it,
    or when it is the oldest trace and admitting a new one would exceed
    ``num_traces``. It is kept if any policy votes keep. Decisions are
    cached so late spans follow their trace.

    Spans arrive either as exporter batches through :meth:`export` (the
    entry point for the aggregation tier) or one at a time through
    :meth:`on_end`.
    """

    def __init__(
        self,
        exporter: SpanExporter,
        policies: Sequence[Policy],
        *,
        decision_wait_millis: float = 10000,
        num_traces: int = 100,
        decided_cache_size: int = 10000,
        tick_millis: Optional[float] = None,
    ) -> None:
        if not policies:
            raise ValueError("TailSamplingProcessor needs at least one policy")
        if decision_wait_millis <= 0:
            raise ValueError("decision_wait_millis must be positive")
        if num_traces <= 0:
            raise ValueError("num_traces must be positive")
        if decided_cache_size <= 0:
            raise ValueError("decided_cache_size must be positive")

        self.exporter = exporter
        self.policies = list(policies)
        self.decision_wait = decision_wait_millis / 1000.0
        self.num_traces = num_traces
        self.decided_cache_size = decided_cache_size

        self._traces: "OrderedDict[int, _TraceBuffer]" = OrderedDict()
        self._decisions: "OrderedDict[int, bool]" = OrderedDict()
        self._lock = threading.Lock()
        self._stopped = False
        self._sampled_traces = 0
        self._dropped_traces = 0
        self._late_spans_dropped = 0

        tick = tick_millis / 1000.0 if tick_millis else min(1.0, self.decision_wait / 10)
        self._tick = tick
        self._done = threading.Event()
        self._ticker = threading.Thread(
            name="tracelet.TailSamplingProcessor", target=self._tick_loop, daemon=True
        )
        self._ticker.start()

    # Counters

    @property
    def sampled_traces(self) -> int:
        return self._sampled_traces

    @property
    def dropped_traces(self) -> int:
        return self._dropped_traces

    @property
    def late_spans_dropped(self) -> int:
        return self._late_spans_dropped

    @property
    def pending_traces(self) -> int:
        return len(self._traces)

    # Intake

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        """Accept a batch from an upstream exporter."""
        to_forward: List[ReadableSpan] = []
        with self._lock:
            if self._stopped:
                return SpanExportResult.FAILURE
            for span in spans:
                trace_id = span.context.trace_id
                decided = self._decisions.get(trace_id)
                if decided is not None:
                    if decided:
                        to_forward.append(span)
                    else:
                        self._late_spans_dropped += 1
                    continue

                buffer = self._traces.get(trace_id)
                if buffer is None:
                    if len(self._traces) >= self.num_traces:
                        oldest_id, oldest = self._traces.popitem(last=False)
                        logger.debug(
                            f"Trace buffer full; deciding trace {oldest_id:032x} early"
                        )
                        if self._decide(oldest_id, oldest.spans):
                            to_forward.extend(oldest.spans)
                    buffer = _TraceBuffer(time.monotonic())
                    self._traces[trace_id] = buffer
                buffer.spans.append(span)
        self._forward(to_forward)
        return SpanExportResult.SUCCESS

    def on_start(self, span, parent_context=None) -> None:
        pass

    def on_end(self, span: ReadableSpan) -> None:
        self.export((span,))

    def complete_trace(self, trace_id: int) -> Optional[bool]:
        """
        Decide ``trace_id`` now instead of waiting for the decision window.

        Returns the decision, or None if no spans of that trace are buffered.
        """
        with self._lock:
            buffer = self._traces.pop(trace_id, None)
            if buffer is None:
                return None
            keep = self._decide(trace_id, buffer.spans)
        if keep:
            self._forward(buffer.spans)
        return keep

    # Lifecycle

    def force_flush(self, timeout: Optional[float] = None) -> bool:
        """Decide every pending trace immediately and flush the downstream exporter."""
        self._decide_pending(expired_only=False)
        return self.exporter.force_flush(timeout)

    def shutdown(self) -> None:
        with self._lock:
            if self._stopped:
                return
            # Spans arriving from here on are rejected, not buffered.
            self._stopped = True
        self._done.set()
        self._ticker.join(timeout=self._tick * 2 + 1)
        self._decide_pending(expired_only=False)
        self.exporter.shutdown()

    # Internal

    def _tick_loop(self) -> None:
        while not self._done.wait(self._tick):
            try:
                self._decide_pending(expired_only=True)
            except Exception:
                logger.exception("Tail sampling decision pass failed")

    def _decide_pending(self, expired_only: bool) -> None:
        to_forward: List[ReadableSpan] = []
        now = time.monotonic()
        with self._lock:
            # Buffers are ordered by first arrival, so the expired ones are at the front.
            while self._traces:
                trace_id, buffer = next(iter(self._traces.items()))
                if expired_only and now - buffer.first_seen < self.decision_wait:
                    break
                del self._traces[trace_id]
                if self._decide(trace_id, buffer.spans):
                    to_forward.extend(buffer.spans)
        self._forward(to_forward)

    def _decide(self, trace_id: int, spans: Sequence[ReadableSpan]) -> bool:
        # Caller holds the lock.
        keep = False
        for policy in self.policies:
            try:
                if policy.evaluate(trace_id, spans):
                    keep = True
                    break
            except Exception:
                logger.exception(f"Tail sampling policy {policy!r} failed")
        if keep:
            self._sampled_traces += 1
        else:
            self._dropped_traces += 1
        self._decisions[trace_id] = keep
        while len(self._decisions) > self.decided_cache_size:
            self._decisions.popitem(last=False)
        return keep

    def _forward(self, spans: List[ReadableSpan]) -> None:
        if not spans:
            return
        try:
            result = self.exporter.export(spans)
        except Exception:
            logger.exception("Exception while forwarding sampled traces.")
            return
        if result is not SpanExportResult.SUCCESS:
            logger.warning(f"Downstream exporter rejected {len(spans)} sampled spans")

