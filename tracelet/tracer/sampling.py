"""
Head sampling: decisions made when a span starts, before the trace exists.

Samplers are pure functions of their inputs and are safe to call from any
thread. Every sampler passes the parent's TraceState through unchanged.
"""

from __future__ import annotations

import abc
import enum
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Mapping, Optional, Sequence

from tracelet.context.context import get_current_span
from tracelet.tracer.span_context import SpanContext
from tracelet.tracer.trace_state import TraceState

if TYPE_CHECKING:
    from opentelemetry.context import Context

    from tracelet.tracer.attributes import Attributes
    from tracelet.tracer.span import Link, SpanKind


class Decision(enum.Enum):
    # The span is not recorded and never reaches processors.
    DROP = 0
    # Recorded locally but never exported.
    RECORD_ONLY = 1
    # Recorded, exported, and the sampled flag is propagated.
    RECORD_AND_SAMPLE = 2

    def is_recording(self) -> bool:
        return self in (Decision.RECORD_ONLY, Decision.RECORD_AND_SAMPLE)

    def is_sampled(self) -> bool:
        return self is Decision.RECORD_AND_SAMPLE


@dataclass(frozen=True)
class SamplingResult:
    decision: Decision
    attributes: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    trace_state: Optional[TraceState] = None

    def __post_init__(self) -> None:
        if not isinstance(self.attributes, MappingProxyType):
            object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes or {})))

    @property
    def sampled(self) -> bool:
        return self.decision.is_sampled()


def _parent_span_context(parent_context: Optional["Context"]) -> Optional[SpanContext]:
    span = get_current_span(parent_context)
    if span is None:
        return None
    span_context = span.get_span_context()
    return span_context if span_context.is_valid else None


def _parent_trace_state(parent_context: Optional["Context"]) -> Optional[TraceState]:
    span_context = _parent_span_context(parent_context)
    return span_context.trace_state if span_context is not None else None


class Sampler(abc.ABC):
    @abc.abstractmethod
    def should_sample(
        self,
        parent_context: Optional["Context"],
        trace_id: int,
        name: str,
        kind: Optional["SpanKind"] = None,
        attributes: "Attributes" = None,
        links: Optional[Sequence["Link"]] = None,
    ) -> SamplingResult:
        pass

    @abc.abstractmethod
    def get_description(self) -> str:
        pass

    def __repr__(self) -> str:
        return self.get_description()


class StaticSampler(Sampler):
    """Sampler that always returns the same decision."""

    def __init__(self, decision: Decision) -> None:
        self._decision = decision

    def should_sample(
        self,
        parent_context: Optional["Context"],
        trace_id: int,
        name: str,
        kind: Optional["SpanKind"] = None,
        attributes: "Attributes" = None,
        links: Optional[Sequence["Link"]] = None,
    ) -> SamplingResult:
        return SamplingResult(self._decision, trace_state=_parent_trace_state(parent_context))

    def get_description(self) -> str:
        if self._decision is Decision.DROP:
            return "AlwaysOffSampler"
        return "AlwaysOnSampler"


class AlwaysOnSampler(StaticSampler):
    def __init__(self) -> None:
        super().__init__(Decision.RECORD_AND_SAMPLE)


class AlwaysOffSampler(StaticSampler):
    def __init__(self) -> None:
        super().__init__(Decision.DROP)


ALWAYS_ON = AlwaysOnSampler()
ALWAYS_OFF = AlwaysOffSampler()


class TraceIdRatioBased(Sampler):
    """
    Samples a fixed fraction of traces, deterministically by trace id.

    The low 64 bits of the trace id are compared against ``rate * 2**64``,
    so every service configured with the same rate reaches the same decision
    for a given trace.
    """

    TRACE_ID_LIMIT = (1 << 64) - 1

    def __init__(self, rate: float) -> None:
        if isinstance(rate, bool) or not isinstance(rate, (int, float)):
            raise ValueError("Probability must be a number in range [0.0, 1.0].")
        if not 0.0 <= rate <= 1.0:
            raise ValueError("Probability must be in range [0.0, 1.0].")
        self._rate = float(rate)
        self._bound = self.get_bound_for_rate(self._rate)

    @classmethod
    def get_bound_for_rate(cls, rate: float) -> int:
        return round(rate * (cls.TRACE_ID_LIMIT + 1))

    @property
    def rate(self) -> float:
        return self._rate

    @property
    def bound(self) -> int:
        return self._bound

    def should_sample(
        self,
        parent_context: Optional["Context"],
        trace_id: int,
        name: str,
        kind: Optional["SpanKind"] = None,
        attributes: "Attributes" = None,
        links: Optional[Sequence["Link"]] = None,
    ) -> SamplingResult:
        trace_state = _parent_trace_state(parent_context)
        if trace_id & self.TRACE_ID_LIMIT < self._bound:
            return SamplingResult(
                Decision.RECORD_AND_SAMPLE,
                {"sampling.probability": self._rate},
                trace_state,
            )
        return SamplingResult(Decision.DROP, trace_state=trace_state)

    def get_description(self) -> str:
        return f"TraceIdRatioBased{{{self._rate}}}"


class ParentBased(Sampler):
    """
    Follows the parent's sampled flag; ``root`` decides for root spans.

    The four delegates are chosen by whether the parent is remote and
    whether it was sampled.
    """

    def __init__(
        self,
        root: Sampler,
        remote_parent_sampled: Sampler = ALWAYS_ON,
        remote_parent_not_sampled: Sampler = ALWAYS_OFF,
        local_parent_sampled: Sampler = ALWAYS_ON,
        local_parent_not_sampled: Sampler = ALWAYS_OFF,
    ) -> None:
        self._root = root
        self._remote_parent_sampled = remote_parent_sampled
        self._remote_parent_not_sampled = remote_parent_not_sampled
        self._local_parent_sampled = local_parent_sampled
        self._local_parent_not_sampled = local_parent_not_sampled

    def _delegate_for(self, parent: Optional[SpanContext]) -> Sampler:
        if parent is None:
            return self._root
        if parent.is_remote:
            if parent.sampled:
                return self._remote_parent_sampled
            return self._remote_parent_not_sampled
        if parent.sampled:
            return self._local_parent_sampled
        return self._local_parent_not_sampled

    def should_sample(
        self,
        parent_context: Optional["Context"],
        trace_id: int,
        name: str,
        kind: Optional["SpanKind"] = None,
        attributes: "Attributes" = None,
        links: Optional[Sequence["Link"]] = None,
    ) -> SamplingResult:
        sampler = self._delegate_for(_parent_span_context(parent_context))
        return sampler.should_sample(
            parent_context=parent_context,
            trace_id=trace_id,
            name=name,
            kind=kind,
            attributes=attributes,
            links=links,
        )

    def get_description(self) -> str:
        return (
            f"ParentBased{{root:{self._root.get_description()},"
            f"remoteParentSampled:{self._remote_parent_sampled.get_description()},"
            f"remoteParentNotSampled:{self._remote_parent_not_sampled.get_description()},"
            f"localParentSampled:{self._local_parent_sampled.get_description()},"
            f"localParentNotSampled:{self._local_parent_not_sampled.get_description()}}}"
        )


class ParentBasedTraceIdRatio(ParentBased):
    def __init__(self, rate: float) -> None:
        super().__init__(root=TraceIdRatioBased(rate=rate))


DEFAULT_ON = ParentBased(ALWAYS_ON)
DEFAULT_OFF = ParentBased(ALWAYS_OFF)


def _parse_ratio(name: str, argument: Optional[Any]) -> float:
    if argument is None or argument == "":
        return 1.0
    try:
        rate = float(argument)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid sampler argument {argument!r} for {name}") from None
    if not 0.0 <= rate <= 1.0:
        raise ValueError(f"Sampler argument for {name} must be in [0.0, 1.0], got {rate}")
    return rate


def sampler_from_name(name: Optional[str], argument: Optional[Any] = None) -> Sampler:
    """
    Build a sampler from its configuration name.

    Raises:
        ValueError: for unknown names or an invalid ratio
    """
    key = (name or "parentbased_always_on").strip().lower()
    if key == "always_on":
        return ALWAYS_ON
    if key == "always_off":
        return ALWAYS_OFF
    if key == "parentbased_always_on":
        return DEFAULT_ON
    if key == "parentbased_always_off":
        return DEFAULT_OFF
    if key == "traceidratio":
        return TraceIdRatioBased(_parse_ratio(key, argument))
    if key == "parentbased_traceidratio":
        return ParentBasedTraceIdRatio(_parse_ratio(key, argument))
    raise ValueError(f"Unknown sampler {name!r}")
