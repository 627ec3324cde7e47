"""OTLP exporter using OpenTelemetry OTLP HTTP exporter."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence
from urllib.parse import urlparse

from opentelemetry.attributes import BoundedAttributes as OTelBoundedAttributes
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter as OTelOTLPSpanExporter
from opentelemetry.sdk.trace import Event as OTelEvent
from opentelemetry.sdk.trace import ReadableSpan as OTelReadableSpan
from opentelemetry.sdk.trace.export import SpanExportResult as OTelSpanExportResult
from opentelemetry.sdk.util import BoundedList
from opentelemetry.trace import Link as OTelLink
from opentelemetry.trace import SpanContext as OTelSpanContext
from opentelemetry.trace import SpanKind as OTelSpanKind
from opentelemetry.trace import Status, StatusCode
from opentelemetry.trace import TraceFlags as OTelTraceFlags
from opentelemetry.trace import TraceState as OTelTraceState

from tracelet.errors import ConfigError, ExportError
from tracelet.exporter.base import SpanExporter, SpanExportResult
from tracelet.tracer.span import ReadableSpan, SpanStatus
from tracelet.tracer.span_context import SpanContext

logger = logging.getLogger(__name__)

_STATUS_CODES = {
    SpanStatus.UNSET: StatusCode.UNSET,
    SpanStatus.OK: StatusCode.OK,
    SpanStatus.ERROR: StatusCode.ERROR,
}


def validate_endpoint(endpoint: str) -> str:
    """Raise ConfigError unless ``endpoint`` is an absolute http(s) URL."""
    parsed = urlparse(endpoint)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigError("Malformed exporter endpoint", {"endpoint": endpoint})
    return endpoint


def _with_dropped_attributes(attributes, dropped: int) -> OTelBoundedAttributes:
    # The SDK only reports drop counts for its own bounded containers.
    bounded = OTelBoundedAttributes(attributes=dict(attributes), immutable=True)
    bounded.dropped = dropped
    return bounded


def _with_dropped_items(items, dropped: int) -> BoundedList:
    bounded = BoundedList.from_seq(None, items)
    bounded.dropped = dropped
    return bounded


def _to_otel_context(context: SpanContext) -> OTelSpanContext:
    return OTelSpanContext(
        trace_id=context.trace_id,
        span_id=context.span_id,
        is_remote=context.is_remote,
        trace_flags=OTelTraceFlags(int(context.trace_flags)),
        trace_state=OTelTraceState(list(context.trace_state.items())),
    )


def to_otel_span(span: ReadableSpan) -> OTelReadableSpan:
    """Convert a tracelet ReadableSpan into the SDK type the OTLP encoder expects."""
    try:
        status_code = _STATUS_CODES[span.status]
        description = span.status_description if span.status is SpanStatus.ERROR else None
        return OTelReadableSpan(
            name=span.name,
            context=_to_otel_context(span.context),
            parent=_to_otel_context(span.parent) if span.parent is not None else None,
            resource=span.resource,
            attributes=_with_dropped_attributes(span.attributes, span.dropped_attributes),
            events=_with_dropped_items(
                [
                    OTelEvent(
                        name=e.name,
                        attributes=_with_dropped_attributes(e.attributes, e.dropped_attributes),
                        timestamp=e.timestamp,
                    )
                    for e in span.events
                ],
                span.dropped_events,
            ),
            links=_with_dropped_items(
                [
                    OTelLink(
                        _to_otel_context(link.context),
                        _with_dropped_attributes(link.attributes, link.dropped_attributes),
                    )
                    for link in span.links
                ],
                span.dropped_links,
            ),
            kind=OTelSpanKind[span.kind.name],
            status=Status(status_code=status_code, description=description),
            start_time=span.start_time,
            end_time=span.end_time,
            instrumentation_scope=span.instrumentation_scope,
        )
    except Exception as exc:
        raise ExportError("Could not convert span for OTLP", {"span": span.name, "error": exc}) from exc


class OTLPExporter(SpanExporter):
    """
    Exports spans over OTLP/HTTP (protobuf).

    Wraps OpenTelemetry's OTLP HTTP exporter, which applies the request
    timeout and its own bounded retry with backoff.
    """

    def __init__(
        self,
        endpoint: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        """
        Initialize OTLP exporter.

        Args:
            endpoint: OTLP endpoint URL (defaults to OTel default)
            api_key: Optional API key sent as a bearer token
            timeout: Request timeout in seconds
            headers: Optional additional headers

        Raises:
            ConfigError: if ``endpoint`` is not an http(s) URL
        """
        if endpoint is not None:
            validate_endpoint(endpoint)
        if timeout <= 0:
            raise ConfigError("Exporter timeout must be positive", {"timeout": timeout})

        export_headers = dict(headers) if headers else {}
        if api_key:
            export_headers["Authorization"] = f"Bearer {api_key}"

        self._otel_exporter = OTelOTLPSpanExporter(
            endpoint=endpoint,
            timeout=timeout,
            headers=export_headers if export_headers else None,
        )

        self.endpoint = endpoint
        self.timeout = timeout
        self._stopped = False

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        """
        Export spans using OTLP format.

        Spans that cannot be converted are logged and skipped.
        """
        if self._stopped:
            return SpanExportResult.FAILURE
        readable_spans: List[OTelReadableSpan] = []
        for span in spans:
            try:
                readable_spans.append(to_otel_span(span))
            except ExportError as exc:
                logger.warning(f"Skipping span: {exc}")
        if not readable_spans:
            return SpanExportResult.SUCCESS

        result = self._otel_exporter.export(readable_spans)
        if result == OTelSpanExportResult.SUCCESS:
            return SpanExportResult.SUCCESS
        return SpanExportResult.FAILURE

    def shutdown(self) -> None:
        """Shutdown the exporter."""
        if self._stopped:
            return
        self._stopped = True
        self._otel_exporter.shutdown()

    def force_flush(self, timeout: Optional[float] = None) -> bool:
        timeout_millis = int(timeout * 1000) if timeout is not None else 30000
        return self._otel_exporter.force_flush(timeout_millis=timeout_millis)
