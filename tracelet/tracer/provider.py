"""TracerProvider, the span processor interface and the global provider holder."""

from __future__ import annotations

import atexit
import logging
import threading
import time
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Tuple, Union

from opentelemetry.sdk.resources import Resource

from tracelet.errors import ConfigError
from tracelet.tracer.sampling import DEFAULT_ON, Sampler
from tracelet.tracer.id_generator import IdGenerator, RandomIdGenerator
from tracelet.tracer.span import SpanLimits

if TYPE_CHECKING:
    from opentelemetry.context import Context

    from tracelet.tracer.span import ReadableSpan, Span
    from tracelet.tracer.tracer import Tracer

logger = logging.getLogger(__name__)


class SpanProcessor:
    """
    Span processor interface.

    ``on_start`` receives the live, mutable span on the thread that started
    it. ``on_end`` receives a read-only snapshot once the span has ended.
    """

    def on_start(self, span: "Span", parent_context: Optional["Context"] = None) -> None:
        """Called when a recording span starts."""
        pass

    def on_end(self, span: "ReadableSpan") -> None:
        """Called when a recording span ends."""
        pass

    def shutdown(self) -> None:
        """Shutdown the processor."""
        pass

    def force_flush(self, timeout: Optional[float] = None) -> bool:
        """Export anything buffered. Returns False if ``timeout`` elapsed first."""
        return True


class SynchronousMultiSpanProcessor(SpanProcessor):
    """
    Fans span events out to every registered processor, in registration order.

    Each call is isolated: a processor that raises is logged and skipped so
    the others still run.
    """

    def __init__(self) -> None:
        self._span_processors: Tuple[SpanProcessor, ...] = ()
        self._lock = threading.Lock()

    @property
    def span_processors(self) -> Tuple[SpanProcessor, ...]:
        return self._span_processors

    def add_span_processor(self, span_processor: SpanProcessor) -> None:
        with self._lock:
            self._span_processors += (span_processor,)

    def on_start(self, span: "Span", parent_context: Optional["Context"] = None) -> None:
        for processor in self._span_processors:
            try:
                processor.on_start(span, parent_context=parent_context)
            except Exception:
                logger.exception(f"Span processor {processor!r} failed in on_start")

    def on_end(self, span: "ReadableSpan") -> None:
        for processor in self._span_processors:
            try:
                processor.on_end(span)
            except Exception:
                logger.exception(f"Span processor {processor!r} failed in on_end")

    def shutdown(self) -> None:
        for processor in self._span_processors:
            try:
                processor.shutdown()
            except Exception:
                logger.exception(f"Span processor {processor!r} failed to shut down")

    def force_flush(self, timeout: Optional[float] = None) -> bool:
        """
        Flush every processor, sharing one deadline between them.

        Returns False if any processor failed or the deadline passed.
        """
        deadline = time.monotonic() + timeout if timeout is not None else None
        flushed = True
        for processor in self._span_processors:
            remaining = None
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
            try:
                if not processor.force_flush(timeout=remaining):
                    flushed = False
            except Exception:
                logger.exception(f"Span processor {processor!r} failed to flush")
                flushed = False
        return flushed


class TracerProvider:
    """
    Owns the tracing configuration and hands out Tracers.

    Sampler, resource, span limits and id generator are fixed at
    construction and read without locking afterwards.
    """

    def __init__(
        self,
        sampler: Optional[Sampler] = None,
        resource: Optional[Union[Resource, Mapping[str, Any]]] = None,
        span_limits: Optional[SpanLimits] = None,
        id_generator: Optional[IdGenerator] = None,
        shutdown_on_exit: bool = True,
    ) -> None:
        """
        Args:
            sampler: Head sampler, ``ParentBased(ALWAYS_ON)`` by default
            resource: Resource or attribute dict describing this process
            span_limits: Caps on attributes/events/links per span
            id_generator: Source of trace and span ids
            shutdown_on_exit: Register :meth:`shutdown` with ``atexit``
        """
        if sampler is None:
            sampler = DEFAULT_ON
        if not isinstance(sampler, Sampler):
            raise ConfigError("sampler must be a Sampler instance", {"sampler": repr(sampler)})
        if isinstance(resource, Resource):
            self.resource = resource
        else:
            self.resource = Resource.create(dict(resource or {}))
        self.sampler = sampler
        self.span_limits = span_limits or SpanLimits()
        self.id_generator = id_generator or RandomIdGenerator()

        self._active_span_processor = SynchronousMultiSpanProcessor()
        self._tracers: Dict[Tuple[str, Optional[str]], "Tracer"] = {}
        self._lock = threading.Lock()
        self._shutdown = False
        self._atexit_handler = None
        if shutdown_on_exit:
            self._atexit_handler = atexit.register(self.shutdown)

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown

    @property
    def span_processor(self) -> SynchronousMultiSpanProcessor:
        return self._active_span_processor

    def get_tracer(
        self,
        name: str,
        version: Optional[str] = None,
        schema_url: Optional[str] = None,
    ) -> "Tracer":
        """
        Get a tracer by name.

        Args:
            name: Instrumentation scope name
            version: Instrumentation scope version
        """
        if not name:
            logger.warning("get_tracer called with missing instrumentation scope name.")
            name = ""
        with self._lock:
            key = (name, version)
            tracer = self._tracers.get(key)
            if tracer is None:
                from tracelet.tracer.tracer import Tracer

                tracer = Tracer(self, name, version=version, schema_url=schema_url)
                self._tracers[key] = tracer
            return tracer

    def add_span_processor(self, processor: SpanProcessor) -> None:
        """Register a processor. Processors run in registration order."""
        self._active_span_processor.add_span_processor(processor)

    def force_flush(self, timeout: Optional[float] = None) -> bool:
        """Force flush all processors."""
        return self._active_span_processor.force_flush(timeout)

    def shutdown(self) -> None:
        """Shutdown the provider and all processors."""
        if self._shutdown:
            logger.debug("shutdown can only be called once")
            return
        self._shutdown = True
        self._active_span_processor.shutdown()
        if self._atexit_handler is not None:
            atexit.unregister(self._atexit_handler)
            self._atexit_handler = None


class _NoOpTracerProvider:
    """Fallback used before a global provider is set: spans never record."""

    def get_tracer(self, name: str, version: Optional[str] = None, schema_url: Optional[str] = None):
        from tracelet.tracer.tracer import NoOpTracer

        return NoOpTracer(name)

    def force_flush(self, timeout: Optional[float] = None) -> bool:
        return True

    def shutdown(self) -> None:
        return None


_NOOP_PROVIDER = _NoOpTracerProvider()
_global_provider: Optional[TracerProvider] = None
_global_lock = threading.Lock()


def set_tracer_provider(provider: TracerProvider) -> bool:
    """
    Install the process-wide provider. Only the first call takes effect.

    Returns True if ``provider`` was installed.
    """
    global _global_provider
    with _global_lock:
        if _global_provider is not None:
            if _global_provider is not provider:
                logger.warning("Overriding of current TracerProvider is not allowed")
            return False
        _global_provider = provider
        return True


def get_tracer_provider():
    """Return the global provider, or a no-op provider if none was set."""
    provider = _global_provider
    if provider is None:
        return _NOOP_PROVIDER
    return provider


def shutdown_tracer_provider() -> None:
    """Shut down and clear the global provider so a new one may be set."""
    global _global_provider
    with _global_lock:
        provider = _global_provider
        _global_provider = None
    if provider is not None:
        provider.shutdown()
