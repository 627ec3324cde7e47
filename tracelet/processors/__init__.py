"""Span processors and supporting utilities."""

from tracelet.processors.batch_processor import BatchSpanProcessor
from tracelet.processors.drop_policy import (
    DEFAULT_DROP_POLICY,
    DropNewestPolicy,
    DropOldestPolicy,
    DropPolicy,
)
from tracelet.processors.logging_processor import LoggingSpanProcessor
from tracelet.processors.simple_processor import SimpleSpanProcessor
from tracelet.tracer.provider import SpanProcessor, SynchronousMultiSpanProcessor

__all__ = [
    "SpanProcessor",
    "SynchronousMultiSpanProcessor",
    "BatchSpanProcessor",
    "SimpleSpanProcessor",
    "LoggingSpanProcessor",
    "DropPolicy",
    "DropOldestPolicy",
    "DropNewestPolicy",
    "DEFAULT_DROP_POLICY",
]
