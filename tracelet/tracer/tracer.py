"""Tracer: creates spans for one instrumentation scope, consulting the head sampler."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Union

from opentelemetry import context as context_api
from opentelemetry.context import Context
from opentelemetry.sdk.util.instrumentation import InstrumentationScope

from tracelet.context.context import get_current_span, set_span_in_context
from tracelet.tracer.sampling import Decision, SamplingResult
from tracelet.tracer.span import (
    INVALID_SPAN,
    Link,
    NonRecordingSpan,
    Span,
    SpanKind,
    make_link,
)
from tracelet.tracer.span_context import SpanContext, TraceFlags
from tracelet.tracer.trace_state import TraceState

if TYPE_CHECKING:
    from tracelet.tracer.provider import TracerProvider

logger = logging.getLogger(__name__)

AnySpan = Union[Span, NonRecordingSpan]


def _resolve_parent_context(
    parent: Optional[AnySpan],
    parent_context: Optional[SpanContext],
    context: Optional[Context],
) -> Context:
    """Pick the parent in priority order: span, span context, context, current context."""
    if parent is not None:
        return set_span_in_context(parent, Context())
    if parent_context is not None:
        return set_span_in_context(NonRecordingSpan(parent_context), Context())
    if context is not None:
        return context
    return context_api.get_current()


class Tracer:
    """
    Span factory for one instrumentation scope.

    Obtain through :meth:`TracerProvider.get_tracer`.
    """

    def __init__(
        self,
        provider: "TracerProvider",
        instrumentation_scope: str,
        version: Optional[str] = None,
        schema_url: Optional[str] = None,
    ) -> None:
        self._provider = provider
        self.instrumentation_scope = InstrumentationScope(
            instrumentation_scope, version, schema_url
        )

    def start_span(
        self,
        name: str,
        context: Optional[Context] = None,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Optional[Dict[str, Any]] = None,
        links: Optional[Sequence[Union[Link, SpanContext]]] = None,
        start_time: Optional[int] = None,
        parent: Optional[AnySpan] = None,
        parent_context: Optional[SpanContext] = None,
    ) -> AnySpan:
        """
        Start a new span.

        Args:
            name: Span name
            context: Context holding the parent span, e.g. from ``extract()``
            kind: Span kind
            attributes: Initial attributes, also visible to the sampler
            links: Links to other spans, as Link or SpanContext
            start_time: Start timestamp in nanoseconds
            parent: Explicit parent span (takes precedence)
            parent_context: Explicit parent SpanContext

        Returns:
            A recording Span, or a NonRecordingSpan if the sampler dropped it
        """
        parent_ctx = _resolve_parent_context(parent, parent_context, context)
        parent_span = get_current_span(parent_ctx)
        parent_span_context = parent_span.get_span_context() if parent_span is not None else None
        if parent_span_context is not None and not parent_span_context.is_valid:
            parent_span_context = None

        provider = self._provider
        if parent_span_context is None:
            trace_id = provider.id_generator.generate_trace_id()
        else:
            trace_id = parent_span_context.trace_id

        limits = provider.span_limits
        span_links: List[Link] = []
        for link in links or ():
            if isinstance(link, SpanContext):
                link = make_link(link, limits=limits)
            span_links.append(link)

        try:
            sampling_result = provider.sampler.should_sample(
                parent_ctx, trace_id, name, kind, attributes, span_links
            )
        except Exception:
            logger.exception(f"Sampler {provider.sampler!r} failed; dropping span {name!r}")
            sampling_result = SamplingResult(Decision.DROP)

        trace_flags = TraceFlags(
            TraceFlags.SAMPLED if sampling_result.decision.is_sampled() else TraceFlags.DEFAULT
        )
        trace_state = sampling_result.trace_state
        if trace_state is None:
            trace_state = parent_span_context.trace_state if parent_span_context else TraceState()
        span_context = SpanContext(
            trace_id=trace_id,
            span_id=provider.id_generator.generate_span_id(),
            trace_flags=trace_flags,
            trace_state=trace_state,
            is_remote=False,
        )

        if provider.is_shutdown:
            logger.debug(f"TracerProvider is shut down; span {name!r} will not be recorded")
            return NonRecordingSpan(span_context)

        if not sampling_result.decision.is_recording():
            return NonRecordingSpan(span_context)

        span_attributes = dict(attributes or {})
        span_attributes.update(sampling_result.attributes)
        span = Span(
            name=name,
            context=span_context,
            parent=parent_span_context,
            kind=kind,
            resource=provider.resource,
            instrumentation_scope=self.instrumentation_scope,
            span_processor=provider.span_processor,
            limits=limits,
            attributes=span_attributes,
            links=span_links,
        )
        span.start(start_time=start_time, parent_context=parent_ctx)
        return span

    def start_as_current_span(
        self,
        name: str,
        context: Optional[Context] = None,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Optional[Dict[str, Any]] = None,
        links: Optional[Sequence[Union[Link, SpanContext]]] = None,
        start_time: Optional[int] = None,
        parent: Optional[AnySpan] = None,
        parent_context: Optional[SpanContext] = None,
    ) -> AnySpan:
        """
        Start a span for use in a ``with`` block.

        Entering the block makes the span current; leaving it ends the span
        and records any exception.
        """
        return self.start_span(
            name,
            context=context,
            kind=kind,
            attributes=attributes,
            links=links,
            start_time=start_time,
            parent=parent,
            parent_context=parent_context,
        )

    def get_current_span(self) -> Optional[AnySpan]:
        """Get the current span."""
        return get_current_span()


class NoOpTracer:
    """Tracer handed out before a provider is configured. Keeps parent context only."""

    def __init__(self, name: str = "") -> None:
        self.instrumentation_scope = InstrumentationScope(name)

    def start_span(
        self,
        name: str,
        context: Optional[Context] = None,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Optional[Dict[str, Any]] = None,
        links: Optional[Sequence[Union[Link, SpanContext]]] = None,
        start_time: Optional[int] = None,
        parent: Optional[AnySpan] = None,
        parent_context: Optional[SpanContext] = None,
    ) -> NonRecordingSpan:
        parent_span = get_current_span(_resolve_parent_context(parent, parent_context, context))
        if parent_span is None:
            return INVALID_SPAN
        return NonRecordingSpan(parent_span.get_span_context())

    start_as_current_span = start_span

    def get_current_span(self) -> Optional[AnySpan]:
        return get_current_span()
