"""Tail sampling tier: trace buffering, policies and trace-id routing."""

from tracelet.tailsampling.loadbalancer import TraceIdLoadBalancingExporter
from tracelet.tailsampling.policies import (
    AlwaysSamplePolicy,
    LatencyPolicy,
    Policy,
    ProbabilisticPolicy,
    SpanCountPolicy,
    StatusCodePolicy,
    StringAttributePolicy,
)
from tracelet.tailsampling.processor import TailSamplingProcessor

__all__ = [
    "TailSamplingProcessor",
    "TraceIdLoadBalancingExporter",
    "Policy",
    "AlwaysSamplePolicy",
    "StatusCodePolicy",
    "LatencyPolicy",
    "ProbabilisticPolicy",
    "StringAttributePolicy",
    "SpanCountPolicy",
]
