"""Span data model: recording spans, non-recording spans and read-only snapshots."""

from __future__ import annotations

import logging
import traceback
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence, Tuple

from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.util.instrumentation import InstrumentationScope

from tracelet.tracer.attributes import Attributes, BoundedAttributes
from tracelet.tracer.span_context import INVALID_SPAN_CONTEXT, SpanContext
from tracelet.utils.helpers import format_span_id, get_duration_ns, time_ns

if TYPE_CHECKING:
    from opentelemetry.context import Context

    from tracelet.tracer.provider import SpanProcessor

logger = logging.getLogger(__name__)

def _empty_attributes() -> Mapping[str, Any]:
    return MappingProxyType({})


class SpanKind(Enum):
    INTERNAL = 0
    SERVER = 1
    CLIENT = 2
    PRODUCER = 3
    CONSUMER = 4


class SpanStatus(Enum):
    UNSET = 0
    OK = 1
    ERROR = 2


@dataclass(frozen=True)
class SpanLimits:
    """Per-span caps. ``None`` means unlimited."""

    max_attributes: Optional[int] = 128
    max_events: Optional[int] = 128
    max_links: Optional[int] = 128
    max_event_attributes: Optional[int] = 128
    max_link_attributes: Optional[int] = 128
    max_attribute_length: Optional[int] = None

    def __post_init__(self) -> None:
        for name in (
            "max_attributes",
            "max_events",
            "max_links",
            "max_event_attributes",
            "max_link_attributes",
            "max_attribute_length",
        ):
            value = getattr(self, name)
            if value is not None and (not isinstance(value, int) or value < 0):
                raise ValueError(f"{name} must be a non-negative integer or None, got {value!r}")


@dataclass(frozen=True)
class Event:
    name: str
    timestamp: int
    attributes: Mapping[str, Any] = field(default_factory=_empty_attributes)
    dropped_attributes: int = 0


@dataclass(frozen=True)
class Link:
    context: SpanContext
    attributes: Mapping[str, Any] = field(default_factory=_empty_attributes)
    dropped_attributes: int = 0


def _bounded(attributes: Attributes, maxlen: Optional[int], max_value_len: Optional[int]):
    bounded = BoundedAttributes(maxlen, attributes, max_value_len=max_value_len)
    return bounded.freeze(), bounded.dropped


def make_link(
    context: SpanContext,
    attributes: Attributes = None,
    limits: Optional[SpanLimits] = None,
) -> Link:
    limits = limits or SpanLimits()
    frozen, dropped = _bounded(attributes, limits.max_link_attributes, limits.max_attribute_length)
    return Link(context=context, attributes=frozen, dropped_attributes=dropped)


@dataclass(frozen=True, eq=False)
class ReadableSpan:
    """Immutable snapshot of an ended span, as handed to processors and exporters."""

    name: str
    context: SpanContext
    parent: Optional[SpanContext] = None
    kind: SpanKind = SpanKind.INTERNAL
    start_time: Optional[int] = None
    end_time: Optional[int] = None
    attributes: Mapping[str, Any] = field(default_factory=_empty_attributes)
    events: Tuple[Event, ...] = ()
    links: Tuple[Link, ...] = ()
    status: SpanStatus = SpanStatus.UNSET
    status_description: Optional[str] = None
    resource: Resource = field(default_factory=Resource.get_empty)
    instrumentation_scope: Optional[InstrumentationScope] = None
    dropped_attributes: int = 0
    dropped_events: int = 0
    dropped_links: int = 0

    def get_span_context(self) -> SpanContext:
        return self.context

    @property
    def parent_span_id(self) -> Optional[int]:
        return self.parent.span_id if self.parent is not None else None

    @property
    def duration_ns(self) -> Optional[int]:
        return get_duration_ns(self.start_time, self.end_time)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly view of the span."""
        scope = self.instrumentation_scope
        return {
            "name": self.name,
            "trace_id": self.context.trace_id_hex,
            "span_id": self.context.span_id_hex,
            "parent_span_id": format_span_id(self.parent.span_id) if self.parent else None,
            "trace_flags": int(self.context.trace_flags),
            "trace_state": self.context.trace_state.to_header() or None,
            "kind": self.kind.name,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "status": self.status.name,
            "status_description": self.status_description,
            "attributes": dict(self.attributes),
            "events": [
                {"name": e.name, "timestamp": e.timestamp, "attributes": dict(e.attributes)}
                for e in self.events
            ],
            "links": [
                {
                    "trace_id": link.context.trace_id_hex,
                    "span_id": link.context.span_id_hex,
                    "attributes": dict(link.attributes),
                }
                for link in self.links
            ],
            "resource": dict(self.resource.attributes),
            "instrumentation_scope": (
                {"name": scope.name, "version": scope.version} if scope is not None else None
            ),
            "dropped_attributes_count": self.dropped_attributes,
            "dropped_events_count": self.dropped_events,
            "dropped_links_count": self.dropped_links,
        }


class _ActivationMixin:
    """Context manager support: entering makes the span current."""

    _activation_tokens: List[Any]

    def _activate(self) -> None:
        from tracelet.context.context import push_span

        self._activation_tokens.append(push_span(self))

    def _deactivate(self) -> None:
        from tracelet.context.context import pop_span

        if self._activation_tokens:
            pop_span(self._activation_tokens.pop())

    def __enter__(self):
        self._activate()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        try:
            if exc is not None and self.is_recording():
                self.record_exception(exc, escaped=True)
                self.set_status(SpanStatus.ERROR, f"{type(exc).__name__}: {exc}")
            self.end()
        finally:
            self._deactivate()
        return False

    async def __aenter__(self):
        return self.__enter__()

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return self.__exit__(exc_type, exc, tb)


class NonRecordingSpan(_ActivationMixin):
    """Span that only carries a SpanContext. Used for dropped traces and remote parents."""

    def __init__(self, context: SpanContext) -> None:
        self._context = context
        self._activation_tokens = []

    def get_span_context(self) -> SpanContext:
        return self._context

    @property
    def context(self) -> SpanContext:
        return self._context

    def is_recording(self) -> bool:
        return False

    def set_attribute(self, key: str, value: Any) -> None:
        pass

    def set_attributes(self, attributes: Mapping[str, Any]) -> None:
        pass

    def add_event(self, name: str, attributes: Attributes = None, timestamp: Optional[int] = None) -> None:
        pass

    def add_link(self, context: SpanContext, attributes: Attributes = None) -> None:
        pass

    def record_exception(self, exception: BaseException, attributes: Attributes = None,
                         timestamp: Optional[int] = None, escaped: bool = False) -> None:
        pass

    def set_status(self, status: SpanStatus, description: Optional[str] = None) -> None:
        pass

    def update_name(self, name: str) -> None:
        pass

    def end(self, end_time: Optional[int] = None) -> None:
        pass

    def __repr__(self) -> str:
        return f"NonRecordingSpan({self._context!r})"


INVALID_SPAN = NonRecordingSpan(INVALID_SPAN_CONTEXT)


class Span(_ActivationMixin):
    """
    A recording span. Created only through :meth:`Tracer.start_span`.

    Spans are single-writer: mutation from several threads at once must be
    serialized by the caller. After :meth:`end` every mutator is a silent
    no-op.
    """

    def __init__(
        self,
        name: str,
        context: SpanContext,
        parent: Optional[SpanContext] = None,
        kind: SpanKind = SpanKind.INTERNAL,
        resource: Optional[Resource] = None,
        instrumentation_scope: Optional[InstrumentationScope] = None,
        span_processor: Optional["SpanProcessor"] = None,
        limits: Optional[SpanLimits] = None,
        attributes: Attributes = None,
        links: Sequence[Link] = (),
    ) -> None:
        self._name = name
        self._context = context
        self._parent = parent
        self._kind = kind
        self._resource = resource if resource is not None else Resource.get_empty()
        self._instrumentation_scope = instrumentation_scope
        self._span_processor = span_processor
        self._limits = limits or SpanLimits()
        self._attributes = BoundedAttributes(
            self._limits.max_attributes,
            attributes,
            max_value_len=self._limits.max_attribute_length,
        )
        self._events: List[Event] = []
        self._dropped_events = 0
        self._links: List[Link] = []
        self._dropped_links = 0
        for link in links:
            self._append_link(link)
        self._status = SpanStatus.UNSET
        self._status_description: Optional[str] = None
        self._start_time: Optional[int] = None
        self._end_time: Optional[int] = None
        self._activation_tokens = []

    def start(self, start_time: Optional[int] = None, parent_context: Optional["Context"] = None) -> None:
        if self._start_time is not None:
            logger.warning("Calling start() on a started span.")
            return
        self._start_time = start_time if start_time is not None else time_ns()
        if self._span_processor is not None:
            self._span_processor.on_start(self, parent_context=parent_context)

    # Readers

    def get_span_context(self) -> SpanContext:
        return self._context

    @property
    def context(self) -> SpanContext:
        return self._context

    def is_recording(self) -> bool:
        return self._end_time is None

    @property
    def name(self) -> str:
        return self._name

    @property
    def kind(self) -> SpanKind:
        return self._kind

    @property
    def parent(self) -> Optional[SpanContext]:
        return self._parent

    @property
    def parent_span_id(self) -> Optional[int]:
        return self._parent.span_id if self._parent is not None else None

    @property
    def start_time(self) -> Optional[int]:
        return self._start_time

    @property
    def end_time(self) -> Optional[int]:
        return self._end_time

    @property
    def duration_ns(self) -> Optional[int]:
        return get_duration_ns(self._start_time, self._end_time)

    @property
    def attributes(self) -> Mapping[str, Any]:
        return self._attributes.freeze()

    @property
    def events(self) -> Tuple[Event, ...]:
        return tuple(self._events)

    @property
    def links(self) -> Tuple[Link, ...]:
        return tuple(self._links)

    @property
    def status(self) -> SpanStatus:
        return self._status

    @property
    def status_description(self) -> Optional[str]:
        return self._status_description

    @property
    def dropped_attributes(self) -> int:
        return self._attributes.dropped

    @property
    def dropped_events(self) -> int:
        return self._dropped_events

    @property
    def dropped_links(self) -> int:
        return self._dropped_links

    @property
    def resource(self) -> Resource:
        return self._resource

    @property
    def instrumentation_scope(self) -> Optional[InstrumentationScope]:
        return self._instrumentation_scope

    # Mutators

    def _ended(self, operation: str) -> bool:
        if self._end_time is not None:
            logger.debug(f"Ignoring {operation} on ended span {self._name!r}")
            return True
        return False

    def set_attribute(self, key: str, value: Any) -> None:
        if self._ended("set_attribute"):
            return
        self._attributes[key] = value

    def set_attributes(self, attributes: Mapping[str, Any]) -> None:
        if self._ended("set_attributes"):
            return
        for key, value in attributes.items():
            self._attributes[key] = value

    def add_event(
        self,
        name: str,
        attributes: Attributes = None,
        timestamp: Optional[int] = None,
    ) -> None:
        if self._ended("add_event"):
            return
        max_events = self._limits.max_events
        if max_events is not None and len(self._events) >= max_events:
            self._dropped_events += 1
            return
        frozen, dropped = _bounded(
            attributes, self._limits.max_event_attributes, self._limits.max_attribute_length
        )
        self._events.append(
            Event(
                name=name,
                timestamp=timestamp if timestamp is not None else time_ns(),
                attributes=frozen,
                dropped_attributes=dropped,
            )
        )

    def _append_link(self, link: Link) -> None:
        if not link.context.is_valid:
            return
        max_links = self._limits.max_links
        if max_links is not None and len(self._links) >= max_links:
            self._dropped_links += 1
            return
        self._links.append(link)

    def add_link(self, context: SpanContext, attributes: Attributes = None) -> None:
        if self._ended("add_link"):
            return
        self._append_link(make_link(context, attributes, self._limits))

    def record_exception(
        self,
        exception: BaseException,
        attributes: Attributes = None,
        timestamp: Optional[int] = None,
        escaped: bool = False,
    ) -> None:
        """Record an exception event on the span and mark it as failed."""
        if self._ended("record_exception"):
            return
        stacktrace = "".join(
            traceback.format_exception(type(exception), exception, exception.__traceback__)
        )
        event_attributes: Dict[str, Any] = {
            "exception.type": type(exception).__qualname__,
            "exception.message": str(exception),
            "exception.stacktrace": stacktrace,
            "exception.escaped": str(escaped),
        }
        if attributes:
            event_attributes.update(attributes)
        self.add_event("exception", event_attributes, timestamp)
        self.set_status(SpanStatus.ERROR, str(exception))

    def set_status(self, status: SpanStatus, description: Optional[str] = None) -> None:
        """
        Set the span status.

        OK is final: once set, later calls are ignored. UNSET is never
        applied, and a description is only kept for ERROR.
        """
        if self._ended("set_status"):
            return
        if self._status is SpanStatus.OK or status is SpanStatus.UNSET:
            return
        self._status = status
        self._status_description = description if status is SpanStatus.ERROR else None

    def update_name(self, name: str) -> None:
        if self._ended("update_name"):
            return
        self._name = name

    def end(self, end_time: Optional[int] = None) -> None:
        if self._end_time is not None:
            logger.debug(f"Calling end() on an ended span {self._name!r}")
            return
        if self._start_time is None:
            logger.warning("Calling end() on a not started span.")
            return
        self._end_time = end_time if end_time is not None else time_ns()
        if self._span_processor is not None:
            self._span_processor.on_end(self.to_readable())

    def to_readable(self) -> ReadableSpan:
        return ReadableSpan(
            name=self._name,
            context=self._context,
            parent=self._parent,
            kind=self._kind,
            start_time=self._start_time,
            end_time=self._end_time,
            attributes=self._attributes.freeze(),
            events=tuple(self._events),
            links=tuple(self._links),
            status=self._status,
            status_description=self._status_description,
            resource=self._resource,
            instrumentation_scope=self._instrumentation_scope,
            dropped_attributes=self._attributes.dropped,
            dropped_events=self._dropped_events,
            dropped_links=self._dropped_links,
        )

    def __repr__(self) -> str:
        return f'{type(self).__name__}(name="{self._name}", context={self._context!r})'
