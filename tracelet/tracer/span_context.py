"""Immutable trace metadata."""

from __future__ import annotations

from dataclasses import dataclass, field

from tracelet.tracer.trace_state import TraceState
from tracelet.utils.helpers import format_span_id, format_trace_id

INVALID_TRACE_ID = 0x0
INVALID_SPAN_ID = 0x0
_TRACE_ID_MAX = 2**128 - 1
_SPAN_ID_MAX = 2**64 - 1


class TraceFlags(int):
    """W3C trace flags. Only bit 0 (sampled) is defined."""

    DEFAULT = 0x00
    SAMPLED = 0x01

    @classmethod
    def get_default(cls) -> "TraceFlags":
        return cls(cls.DEFAULT)

    @property
    def sampled(self) -> bool:
        return bool(self & TraceFlags.SAMPLED)


DEFAULT_TRACE_FLAGS = TraceFlags.get_default()


@dataclass(frozen=True)
class SpanContext:
    trace_id: int
    span_id: int
    trace_flags: TraceFlags = DEFAULT_TRACE_FLAGS
    trace_state: TraceState = field(default_factory=TraceState)
    is_remote: bool = False

    def __post_init__(self) -> None:
        # Plain ints are accepted for convenience; normalize to TraceFlags.
        if not isinstance(self.trace_flags, TraceFlags):
            object.__setattr__(self, "trace_flags", TraceFlags(self.trace_flags))

    @property
    def is_valid(self) -> bool:
        return (
            INVALID_TRACE_ID < self.trace_id <= _TRACE_ID_MAX
            and INVALID_SPAN_ID < self.span_id <= _SPAN_ID_MAX
        )

    @property
    def sampled(self) -> bool:
        return self.trace_flags.sampled

    @property
    def trace_id_hex(self) -> str:
        return format_trace_id(self.trace_id)

    @property
    def span_id_hex(self) -> str:
        return format_span_id(self.span_id)

    def __repr__(self) -> str:
        return (
            f"SpanContext(trace_id=0x{self.trace_id_hex}, span_id=0x{self.span_id_hex}, "
            f"trace_flags=0x{self.trace_flags:02x}, trace_state={self.trace_state!r}, "
            f"is_remote={self.is_remote})"
        )


INVALID_SPAN_CONTEXT = SpanContext(
    trace_id=INVALID_TRACE_ID,
    span_id=INVALID_SPAN_ID,
    trace_flags=DEFAULT_TRACE_FLAGS,
)
