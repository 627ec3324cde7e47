"""HTTP server helpers for extracting context and creating server spans."""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from opentelemetry.context import Context

from tracelet.context import extract
from tracelet.tracer.span import SpanKind
from tracelet.tracer.tracer import Tracer


def extract_parent_context(headers: Mapping[str, str]) -> Context:
    """
    Parse propagation headers into a Context.

    Malformed or missing headers yield an empty Context, so the server span
    becomes a new root.
    """
    return extract(headers)


def start_server_span(
    tracer: Tracer,
    name: str,
    headers: Mapping[str, str],
    attributes: Optional[Dict[str, Any]] = None,
):
    """
    Convenience helper to start a SERVER span parented on the incoming request.

    Returns the span; use it with ``with`` or ``async with`` to make it current.
    """
    return tracer.start_as_current_span(
        name,
        context=extract_parent_context(headers),
        kind=SpanKind.SERVER,
        attributes=attributes,
    )
