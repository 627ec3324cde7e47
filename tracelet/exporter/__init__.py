"""Exporters for delivering spans to backends."""

from tracelet.exporter.base import SpanExporter, SpanExportResult
from tracelet.exporter.console_exporter import ConsoleExporter
from tracelet.exporter.in_memory_exporter import InMemorySpanExporter
from tracelet.exporter.otlp_exporter import OTLPExporter

__all__ = [
    "SpanExporter",
    "SpanExportResult",
    "ConsoleExporter",
    "InMemorySpanExporter",
    "OTLPExporter",
]
