"""Context propagation: W3C Trace Context, W3C Baggage and composition of propagators."""

from __future__ import annotations

import abc
import logging
import re
from typing import Iterable, List, Mapping, Optional, Sequence, Set
from urllib.parse import quote_plus, unquote_plus

from opentelemetry.context import Context
from opentelemetry.propagators.textmap import (
    CarrierT,
    DefaultSetter,
    Getter,
    Setter,
)

from tracelet.context import baggage as baggage_api
from tracelet.context.context import get_current_span, set_span_in_context
from tracelet.tracer.span import NonRecordingSpan
from tracelet.tracer.span_context import SpanContext, TraceFlags
from tracelet.tracer.trace_state import TraceState

logger = logging.getLogger(__name__)

TRACEPARENT_HEADER = "traceparent"
TRACESTATE_HEADER = "tracestate"
BAGGAGE_HEADER = "baggage"

SUPPORTED_VERSION = "00"
_TRACEPARENT_PATTERN = re.compile(
    r"^[ \t]*([0-9a-f]{2})-([0-9a-f]{32})-([0-9a-f]{16})-([0-9a-f]{2})[ \t]*$"
)
_INVALID_TRACE_ID = "0" * 32
_INVALID_SPAN_ID = "0" * 16


class CaseInsensitiveGetter(Getter[Mapping[str, object]]):
    """
    Getter for dict-like carriers that matches keys case-insensitively,
    as transport headers are.
    """

    def get(self, carrier: Mapping[str, object], key: str) -> Optional[List[str]]:
        value = carrier.get(key)
        if value is None:
            lowered = key.lower()
            for carrier_key, carrier_value in carrier.items():
                if isinstance(carrier_key, str) and carrier_key.lower() == lowered:
                    value = carrier_value
                    break
        if value is None:
            return None
        if isinstance(value, Iterable) and not isinstance(value, str):
            return [str(v) for v in value]
        return [str(value)]

    def keys(self, carrier: Mapping[str, object]) -> List[str]:
        return list(carrier.keys())


default_getter = CaseInsensitiveGetter()
default_setter = DefaultSetter()


class TextMapPropagator(abc.ABC):
    """Moves context in and out of a string key-value carrier."""

    @abc.abstractmethod
    def extract(
        self,
        carrier: CarrierT,
        context: Optional[Context] = None,
        getter: Getter[CarrierT] = default_getter,
    ) -> Context:
        """Return ``context`` updated with whatever this propagator reads from ``carrier``."""

    @abc.abstractmethod
    def inject(
        self,
        carrier: CarrierT,
        context: Optional[Context] = None,
        setter: Setter[CarrierT] = default_setter,
    ) -> None:
        """Write this propagator's fields for ``context`` into ``carrier``."""

    @property
    @abc.abstractmethod
    def fields(self) -> Set[str]:
        """Carrier keys this propagator reads and writes."""


# Raw header helpers

def format_traceparent(context: SpanContext) -> str:
    """
    Format a traceparent header value (W3C Trace Context, version 00).
    """
    return f"{SUPPORTED_VERSION}-{context.trace_id_hex}-{context.span_id_hex}-{int(context.trace_flags):02x}"


def parse_traceparent(header_value: Optional[str]) -> Optional[SpanContext]:
    """
    Parse a traceparent header into a remote SpanContext.

    Returns None for anything other than a well-formed version 00 header
    with non-zero ids.
    """
    if not header_value:
        return None
    match = _TRACEPARENT_PATTERN.match(header_value)
    if match is None:
        return None
    version, trace_id, span_id, flags = match.groups()
    if version != SUPPORTED_VERSION:
        return None
    if trace_id == _INVALID_TRACE_ID or span_id == _INVALID_SPAN_ID:
        return None
    return SpanContext(
        trace_id=int(trace_id, 16),
        span_id=int(span_id, 16),
        trace_flags=TraceFlags(int(flags, 16)),
        is_remote=True,
    )


def format_tracestate(state: Mapping[str, str]) -> str:
    """
    Format a tracestate header value from a mapping or TraceState.

    Invalid entries are skipped; the result respects the header size cap.
    """
    if not state:
        return ""
    if not isinstance(state, TraceState):
        trace_state = TraceState()
        for key, value in reversed(list(state.items())):
            trace_state = trace_state.add(str(key).strip().lower(), str(value).strip())
        state = trace_state
    return state.to_header()


def parse_tracestate(header_value: Optional[str]) -> TraceState:
    """
    Parse a tracestate header. Malformed input yields an empty TraceState.
    """
    if not header_value:
        return TraceState()
    return TraceState.from_header([header_value])


class TraceContextPropagator(TextMapPropagator):
    """W3C Trace Context: the ``traceparent`` and ``tracestate`` fields."""

    _FIELDS = {TRACEPARENT_HEADER, TRACESTATE_HEADER}

    def extract(
        self,
        carrier: CarrierT,
        context: Optional[Context] = None,
        getter: Getter[CarrierT] = default_getter,
    ) -> Context:
        if context is None:
            context = Context()

        try:
            header = getter.get(carrier, TRACEPARENT_HEADER)
        except Exception:
            logger.debug("Getter failed reading traceparent", exc_info=True)
            return context
        if not header or len(header) != 1:
            return context

        span_context = parse_traceparent(header[0])
        if span_context is None:
            logger.debug(f"Ignoring malformed traceparent {header[0]!r}")
            return context

        try:
            tracestate_headers = getter.get(carrier, TRACESTATE_HEADER)
        except Exception:
            logger.debug("Getter failed reading tracestate", exc_info=True)
            tracestate_headers = None
        if tracestate_headers:
            span_context = SpanContext(
                trace_id=span_context.trace_id,
                span_id=span_context.span_id,
                trace_flags=span_context.trace_flags,
                trace_state=TraceState.from_header(tracestate_headers),
                is_remote=True,
            )
        return set_span_in_context(NonRecordingSpan(span_context), context)

    def inject(
        self,
        carrier: CarrierT,
        context: Optional[Context] = None,
        setter: Setter[CarrierT] = default_setter,
    ) -> None:
        span = get_current_span(context)
        if span is None:
            return
        span_context = span.get_span_context()
        if not span_context.is_valid:
            return
        setter.set(carrier, TRACEPARENT_HEADER, format_traceparent(span_context))
        if span_context.trace_state:
            setter.set(carrier, TRACESTATE_HEADER, span_context.trace_state.to_header())

    @property
    def fields(self) -> Set[str]:
        return set(self._FIELDS)


class W3CBaggagePropagator(TextMapPropagator):
    """W3C Baggage: the ``baggage`` field."""

    MAX_HEADER_LENGTH = 8192
    MAX_PAIR_LENGTH = 4096
    MAX_PAIRS = 180

    def extract(
        self,
        carrier: CarrierT,
        context: Optional[Context] = None,
        getter: Getter[CarrierT] = default_getter,
    ) -> Context:
        if context is None:
            context = Context()

        try:
            header_values = getter.get(carrier, BAGGAGE_HEADER)
        except Exception:
            logger.debug("Getter failed reading baggage", exc_info=True)
            return context
        if not header_values:
            return context
        header = ",".join(header_values)
        if len(header) > self.MAX_HEADER_LENGTH:
            logger.warning(f"Baggage header exceeds {self.MAX_HEADER_LENGTH} characters; ignoring")
            return context

        entries = header.split(",")
        if len(entries) > self.MAX_PAIRS:
            logger.warning(f"Baggage has more than {self.MAX_PAIRS} entries; truncating")
            entries = entries[: self.MAX_PAIRS]

        for entry in entries:
            if not entry.strip():
                continue
            if len(entry) > self.MAX_PAIR_LENGTH:
                logger.warning("Baggage entry too long; skipping")
                continue
            # Properties after ';' are not retained.
            pair = entry.split(";", 1)[0]
            if "=" not in pair:
                logger.debug(f"Malformed baggage entry {entry!r}")
                continue
            name, value = pair.split("=", 1)
            name = unquote_plus(name).strip()
            value = unquote_plus(value).strip()
            if not name:
                continue
            context = baggage_api.set_baggage(name, value, context=context)
        return context

    def inject(
        self,
        carrier: CarrierT,
        context: Optional[Context] = None,
        setter: Setter[CarrierT] = default_setter,
    ) -> None:
        entries = baggage_api.get_all(context)
        if not entries:
            return
        header = ",".join(
            f"{quote_plus(str(key))}={quote_plus(str(value))}" for key, value in entries.items()
        )
        setter.set(carrier, BAGGAGE_HEADER, header)

    @property
    def fields(self) -> Set[str]:
        return {BAGGAGE_HEADER}


class CompositePropagator(TextMapPropagator):
    """
    Runs several propagators in order. Each one owns disjoint carrier keys,
    so ordering affects only cost, not the result.
    """

    def __init__(self, propagators: Sequence[TextMapPropagator]) -> None:
        self._propagators = list(propagators)

    def extract(
        self,
        carrier: CarrierT,
        context: Optional[Context] = None,
        getter: Getter[CarrierT] = default_getter,
    ) -> Context:
        for propagator in self._propagators:
            context = propagator.extract(carrier, context, getter=getter)
        return context if context is not None else Context()

    def inject(
        self,
        carrier: CarrierT,
        context: Optional[Context] = None,
        setter: Setter[CarrierT] = default_setter,
    ) -> None:
        for propagator in self._propagators:
            propagator.inject(carrier, context, setter=setter)

    @property
    def fields(self) -> Set[str]:
        composite: Set[str] = set()
        for propagator in self._propagators:
            composite |= propagator.fields
        return composite


_global_textmap: TextMapPropagator = CompositePropagator(
    [TraceContextPropagator(), W3CBaggagePropagator()]
)


def get_global_textmap() -> TextMapPropagator:
    return _global_textmap


def set_global_textmap(propagator: TextMapPropagator) -> None:
    global _global_textmap
    _global_textmap = propagator


def inject(
    carrier: CarrierT,
    context: Optional[Context] = None,
    setter: Setter[CarrierT] = default_setter,
) -> None:
    """
    Inject the current (or given) context into ``carrier`` with the global propagator.
    """
    get_global_textmap().inject(carrier, context, setter=setter)


def extract(
    carrier: CarrierT,
    context: Optional[Context] = None,
    getter: Getter[CarrierT] = default_getter,
) -> Context:
    """
    Extract a context from ``carrier`` with the global propagator.

    The result can be passed as ``context=`` to :meth:`Tracer.start_span`.
    """
    return get_global_textmap().extract(carrier, context, getter=getter)


def extract_trace_context(headers: Mapping[str, str]) -> Optional[SpanContext]:
    """
    Read traceparent and tracestate from ``headers`` and return the combined
    remote SpanContext, or None if there is no valid one.
    """
    span = get_current_span(TraceContextPropagator().extract(headers))
    if span is None:
        return None
    return span.get_span_context()
