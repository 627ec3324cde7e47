"""Batching span processor with bounded queue and background flush."""

from __future__ import annotations

import enum
import logging
import os
import threading
import time
import weakref
from collections import deque
from typing import Deque, List, Optional

from tracelet.exporter.base import SpanExporter, SpanExportResult
from tracelet.processors.drop_policy import DEFAULT_DROP_POLICY, DropPolicy
from tracelet.tracer.provider import SpanProcessor
from tracelet.tracer.span import ReadableSpan

logger = logging.getLogger(__name__)


class _State(enum.Enum):
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    SHUTDOWN = "shutdown"


class _FlushRequest:
    """Signals the caller of force_flush() once ``num_spans`` have been exported."""

    __slots__ = ["event", "num_spans"]

    def __init__(self) -> None:
        self.event = threading.Event()
        self.num_spans = 0


class BatchSpanProcessor(SpanProcessor):
    """
    Batch span processor that queues ended spans for export.

    ``on_end`` only appends to a bounded queue and never waits for space:
    when the queue is full the drop policy discards a span and
    ``dropped_spans`` is incremented. A single daemon worker exports a batch
    whenever ``max_export_batch_size`` spans are queued or
    ``schedule_delay_millis`` has passed since the last export, so the
    exporter is never called concurrently.
    """

    def __init__(
        self,
        exporter: SpanExporter,
        *,
        max_queue_size: int = 2048,
        max_export_batch_size: int = 512,
        schedule_delay_millis: float = 5000,
        export_timeout_millis: float = 30000,
        drop_policy: Optional[DropPolicy] = None,
    ) -> None:
        if max_queue_size <= 0:
            raise ValueError("max_queue_size must be a positive integer.")
        if max_export_batch_size <= 0:
            raise ValueError("max_export_batch_size must be a positive integer.")
        if max_export_batch_size > max_queue_size:
            raise ValueError("max_export_batch_size must be less than or equal to max_queue_size.")
        if schedule_delay_millis <= 0:
            raise ValueError("schedule_delay_millis must be positive.")
        if export_timeout_millis <= 0:
            raise ValueError("export_timeout_millis must be positive.")

        self.exporter = exporter
        self.max_queue_size = max_queue_size
        self.max_export_batch_size = max_export_batch_size
        self.schedule_delay = schedule_delay_millis / 1000.0
        self.export_timeout = export_timeout_millis / 1000.0
        self.drop_policy = drop_policy or DEFAULT_DROP_POLICY

        self._queue: Deque[ReadableSpan] = deque()
        self._condition = threading.Condition(threading.Lock())
        self._state = _State.RUNNING
        self._flush_request: Optional[_FlushRequest] = None
        self._dropped_spans = 0
        self._exported_spans = 0
        self._failed_exports = 0
        self._worker = self._start_worker()

        if hasattr(os, "register_at_fork"):
            weak_reinit = weakref.WeakMethod(self._at_fork_reinit)

            def _reinit_in_child() -> None:
                reinit = weak_reinit()
                if reinit is not None:
                    reinit()

            os.register_at_fork(after_in_child=_reinit_in_child)

    # Counters

    @property
    def dropped_spans(self) -> int:
        """Spans discarded because the queue was full."""
        return self._dropped_spans

    @property
    def exported_spans(self) -> int:
        return self._exported_spans

    @property
    def failed_exports(self) -> int:
        return self._failed_exports

    @property
    def queue_size(self) -> int:
        return len(self._queue)

    @property
    def is_shutdown(self) -> bool:
        return self._state is not _State.RUNNING

    # SpanProcessor

    def on_start(self, span, parent_context=None) -> None:
        pass

    def on_end(self, span: ReadableSpan) -> None:
        if self._state is not _State.RUNNING:
            logger.debug("Already shutdown, dropping span.")
            return
        if not span.context.sampled:
            return

        with self._condition:
            if self._state is not _State.RUNNING:
                logger.debug("Shutdown started, dropping span.")
                return
            dropped = self.drop_policy.handle(self._queue, span, self.max_queue_size)
            if dropped is not None:
                self._dropped_spans += 1
                first_drop = self._dropped_spans == 1
            if len(self._queue) >= self.max_export_batch_size:
                self._condition.notify()

        if dropped is not None and first_drop:
            logger.warning("Queue is full, likely spans will be dropped.")

    def force_flush(self, timeout: Optional[float] = None) -> bool:
        """
        Export everything queued so far and wait for the worker to finish it.

        Returns False if ``timeout`` (seconds, default ``export_timeout_millis``)
        elapsed first, or if the processor is already shut down.
        """
        if self._state is not _State.RUNNING:
            logger.warning("Already shutdown, ignoring call to force_flush().")
            return False
        if timeout is None:
            timeout = self.export_timeout

        with self._condition:
            flush_request = self._get_or_create_flush_request()
            self._condition.notify_all()

        flushed = flush_request.event.wait(timeout)
        if not flushed:
            logger.warning("Timeout was exceeded in force_flush().")
        return flushed

    def shutdown(self, timeout: Optional[float] = None) -> bool:
        """
        Stop accepting spans, export everything still queued, then shut the
        exporter down.

        Returns False if the worker did not finish within ``timeout``
        (seconds, default ``export_timeout_millis``).
        """
        with self._condition:
            if self._state is not _State.RUNNING:
                return True
            self._state = _State.SHUTTING_DOWN
            self._condition.notify_all()

        self._worker.join(timeout if timeout is not None else self.export_timeout)
        finished = not self._worker.is_alive()
        if not finished:
            logger.warning("Timeout was exceeded while draining spans during shutdown().")
        self._state = _State.SHUTDOWN

        try:
            self.exporter.shutdown()
        except Exception:
            logger.exception("Exception while shutting down span exporter.")
        if self._dropped_spans:
            logger.info(f"BatchSpanProcessor shut down; {self._dropped_spans} spans were dropped")
        return finished

    # Internal

    def _start_worker(self) -> threading.Thread:
        worker = threading.Thread(
            name="tracelet.BatchSpanProcessor", target=self._worker_loop, daemon=True
        )
        worker.start()
        return worker

    def _at_fork_reinit(self) -> None:
        self._condition = threading.Condition(threading.Lock())
        self._queue.clear()
        self._flush_request = None
        if self._state is _State.RUNNING:
            self._worker = self._start_worker()

    def _get_or_create_flush_request(self) -> _FlushRequest:
        # Caller holds the condition.
        if self._flush_request is None:
            self._flush_request = _FlushRequest()
            self._flush_request.num_spans = len(self._queue)
        return self._flush_request

    def _take_flush_request(self) -> Optional[_FlushRequest]:
        # Caller holds the condition.
        flush_request = self._flush_request
        self._flush_request = None
        return flush_request

    @staticmethod
    def _notify_flush_done(flush_request: Optional[_FlushRequest]) -> None:
        if flush_request is not None:
            flush_request.event.set()

    def _worker_loop(self) -> None:
        """Background worker that exports full batches or on the schedule delay."""
        timeout = self.schedule_delay
        flush_request: Optional[_FlushRequest] = None
        while self._state is _State.RUNNING:
            with self._condition:
                if self._state is not _State.RUNNING:
                    break
                flush_request = self._take_flush_request()
                if flush_request is None and len(self._queue) < self.max_export_batch_size:
                    self._condition.wait(timeout)
                    flush_request = self._take_flush_request()
                    if not self._queue:
                        timeout = self.schedule_delay
                        self._notify_flush_done(flush_request)
                        flush_request = None
                        continue
                    if self._state is not _State.RUNNING:
                        break

            start = time.monotonic()
            self._export(flush_request)
            timeout = self.schedule_delay - (time.monotonic() - start)
            self._notify_flush_done(flush_request)
            flush_request = None

        # Shutting down: export whatever is left and release any waiters.
        with self._condition:
            shutdown_flush_request = self._take_flush_request()
        self._drain_queue()
        self._notify_flush_done(flush_request)
        self._notify_flush_done(shutdown_flush_request)

    def _export(self, flush_request: Optional[_FlushRequest]) -> None:
        if flush_request is None:
            self._export_batch()
            return
        num_spans = flush_request.num_spans
        while self._queue:
            num_spans -= self._export_batch()
            if num_spans <= 0:
                break

    def _export_batch(self) -> int:
        """Export one batch. Returns the number of spans taken off the queue."""
        batch: List[ReadableSpan] = []
        with self._condition:
            while self._queue and len(batch) < self.max_export_batch_size:
                batch.append(self._queue.popleft())
        if not batch:
            return 0

        try:
            result = self.exporter.export(batch)
        except Exception:
            # Export errors are contained; the application keeps running.
            self._failed_exports += 1
            logger.exception("Exception while exporting span batch.")
            return len(batch)

        if result is SpanExportResult.SUCCESS:
            self._exported_spans += len(batch)
        else:
            self._failed_exports += 1
            logger.warning(f"Exporter {type(self.exporter).__name__} failed to export {len(batch)} spans")
        return len(batch)

    def _drain_queue(self) -> None:
        while self._queue:
            self._export_batch()
