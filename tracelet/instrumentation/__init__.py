"""Instrumentation helpers."""

from tracelet.instrumentation.decorator import observe
from tracelet.instrumentation.http_client import inject_headers as inject_http_headers
from tracelet.instrumentation.http_server import extract_parent_context, start_server_span

__all__ = [
    "observe",
    "inject_http_headers",
    "extract_parent_context",
    "start_server_span",
]
