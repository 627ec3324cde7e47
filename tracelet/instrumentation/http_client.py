"""HTTP client helpers for context propagation."""

from __future__ import annotations

from typing import Dict, Optional

from opentelemetry.context import Context

from tracelet.context import inject


def inject_headers(headers: Dict[str, str], context: Optional[Context] = None) -> Dict[str, str]:
    """
    Inject propagation headers (traceparent, tracestate, baggage) for the
    current or given context into ``headers``.

    Returns the same headers mapping for convenience.
    """
    inject(headers, context)
    return headers
