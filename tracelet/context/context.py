"""Context helpers for managing the active span, built on OpenTelemetry's context API."""

from contextlib import contextmanager
from contextvars import Token
from typing import Iterator, Optional, TYPE_CHECKING, Union

from opentelemetry import context as context_api
from opentelemetry.context import Context

if TYPE_CHECKING:
    from tracelet.tracer.span import NonRecordingSpan, Span

    AnySpan = Union[Span, NonRecordingSpan]

_SPAN_KEY = context_api.create_key("tracelet-current-span")


def get_current_span(context: Optional[Context] = None) -> Optional["AnySpan"]:
    """
    Return the span stored in ``context`` (the current context by default), if any.
    """
    return context_api.get_value(_SPAN_KEY, context=context)


def set_span_in_context(span: "AnySpan", context: Optional[Context] = None) -> Context:
    """Return a new Context in which ``span`` is the active span."""
    return context_api.set_value(_SPAN_KEY, span, context=context)


def push_span(span: "AnySpan") -> Token:
    """
    Make ``span`` the current span.

    Returns:
        Token needed to restore the previous state
    """
    return context_api.attach(set_span_in_context(span))


def pop_span(token: Token) -> None:
    """
    Restore the previous span context using the provided token.

    Args:
        token: Token returned by push_span()
    """
    context_api.detach(token)


@contextmanager
def use_span(span: "AnySpan", end_on_exit: bool = False) -> Iterator["AnySpan"]:
    """Activate ``span`` for the duration of the block without creating a new one."""
    token = push_span(span)
    try:
        yield span
    finally:
        pop_span(token)
        if end_on_exit:
            span.end()
