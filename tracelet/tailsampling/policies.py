"""Tail sampling policies: each one votes on a whole buffered trace."""

from __future__ import annotations

import abc
import hashlib
from typing import Iterable, Sequence

from tracelet.tracer.span import ReadableSpan, SpanStatus
from tracelet.utils.helpers import format_trace_id


class Policy(abc.ABC):
    """A keep/drop vote on a complete (or timed-out) trace."""

    name: str = "policy"

    @abc.abstractmethod
    def evaluate(self, trace_id: int, spans: Sequence[ReadableSpan]) -> bool:
        """Return True to keep the trace."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class AlwaysSamplePolicy(Policy):
    name = "always_sample"

    def evaluate(self, trace_id: int, spans: Sequence[ReadableSpan]) -> bool:
        return True


class StatusCodePolicy(Policy):
    """Keep traces containing any span whose status is in ``codes``."""

    name = "status_code"

    def __init__(self, codes: Iterable[SpanStatus] = (SpanStatus.ERROR,)) -> None:
        self.codes = frozenset(codes)
        if not self.codes:
            raise ValueError("StatusCodePolicy needs at least one status code")

    def evaluate(self, trace_id: int, spans: Sequence[ReadableSpan]) -> bool:
        return any(span.status in self.codes for span in spans)


class LatencyPolicy(Policy):
    """Keep traces whose end-to-end duration is at least ``threshold_millis``."""

    name = "latency"

    def __init__(self, threshold_millis: float) -> None:
        if threshold_millis < 0:
            raise ValueError("threshold_millis must be non-negative")
        self.threshold_ns = int(threshold_millis * 1_000_000)

    def evaluate(self, trace_id: int, spans: Sequence[ReadableSpan]) -> bool:
        starts = [s.start_time for s in spans if s.start_time is not None]
        ends = [s.end_time for s in spans if s.end_time is not None]
        if not starts or not ends:
            return False
        return max(ends) - min(starts) >= self.threshold_ns


class ProbabilisticPolicy(Policy):
    """
    Keep a baseline percentage of traces.

    The vote is a hash of the salted trace id, so it is stable across
    aggregation instances and independent of the head sampler's bits.
    """

    name = "probabilistic"
    _HASH_SPACE = 1 << 64

    def __init__(self, sampling_percentage: float, hash_salt: str = "") -> None:
        if not 0.0 <= sampling_percentage <= 100.0:
            raise ValueError("sampling_percentage must be in [0, 100]")
        self.sampling_percentage = sampling_percentage
        self.hash_salt = hash_salt
        self._threshold = round(sampling_percentage / 100.0 * self._HASH_SPACE)

    def evaluate(self, trace_id: int, spans: Sequence[ReadableSpan]) -> bool:
        digest = hashlib.blake2b(
            f"{self.hash_salt}{format_trace_id(trace_id)}".encode(), digest_size=8
        ).digest()
        return int.from_bytes(digest, "big") < self._threshold


class StringAttributePolicy(Policy):
    """Keep traces where any span has attribute ``key`` set to one of ``values``."""

    name = "string_attribute"

    def __init__(self, key: str, values: Iterable[str]) -> None:
        self.key = key
        self.values = frozenset(values)

    def evaluate(self, trace_id: int, spans: Sequence[ReadableSpan]) -> bool:
        return any(span.attributes.get(self.key) in self.values for span in spans)


class SpanCountPolicy(Policy):
    """Keep traces with at least ``min_spans`` spans."""

    name = "span_count"

    def __init__(self, min_spans: int) -> None:
        if min_spans < 1:
            raise ValueError("min_spans must be at least 1")
        self.min_spans = min_spans

    def evaluate(self, trace_id: int, spans: Sequence[ReadableSpan]) -> bool:
        return len(spans) >= self.min_spans
