"""@observe decorator for instrumenting functions."""

from __future__ import annotations

import functools
import inspect
import json
from typing import Any, Callable, Dict, Iterable, Optional

from tracelet.tracer.span import SpanKind

MAX_VALUE_LENGTH = 1000
MAX_SEQUENCE_LENGTH = 100


def _capture_args(bound_args: inspect.BoundArguments, skip: Iterable[str]) -> Dict[str, Any]:
    """Capture function arguments as ``arg.<name>`` attributes."""
    captured = {}
    for name, value in bound_args.arguments.items():
        if name in skip or name in ("self", "cls"):
            continue
        captured[f"arg.{name}"] = _to_attribute_value(value)
    return captured


def _to_attribute_value(value: Any) -> Any:
    """
    Convert a value to something a span attribute can hold.

    Attributes must be bool, str, int, float, or homogeneous sequences of
    those. Bytes are decoded as UTF-8; anything else is stringified and
    truncated.
    """
    if isinstance(value, (bool, str, int, float)):
        return value
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", "replace")[:MAX_VALUE_LENGTH]
    if value is None:
        return "None"

    if isinstance(value, (list, tuple)):
        items = [
            item if isinstance(item, (bool, str, int, float)) else str(item)[:MAX_VALUE_LENGTH]
            for item in value[:MAX_SEQUENCE_LENGTH]
        ]
        if len({type(item) for item in items}) > 1:
            items = [str(item) for item in items]
        return tuple(items)

    if isinstance(value, dict):
        try:
            return json.dumps(value, default=str)[:MAX_VALUE_LENGTH]
        except (TypeError, ValueError):
            return str(value)[:MAX_VALUE_LENGTH]

    return str(value)[:MAX_VALUE_LENGTH]


def observe(
    name: Optional[str] = None,
    *,
    attributes: Optional[Dict[str, Any]] = None,
    kind: SpanKind = SpanKind.INTERNAL,
    skip_args: Optional[Iterable[str]] = None,
    capture_args: bool = True,
    skip_result: bool = True,
    tracer_name: Optional[str] = None,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Decorate a function to create a span around its execution.

    - Supports sync and async functions.
    - Exceptions are recorded on the span, which is marked ERROR, then re-raised.
    - Optionally captures arguments/results (skip controls).
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        span_name = name or func.__qualname__
        skip_args_set = set(skip_args or [])
        signature = inspect.signature(func)
        is_coro = inspect.iscoroutinefunction(func)

        def _span_attributes(args, kwargs) -> Dict[str, Any]:
            span_attrs = dict(attributes or {})
            span_attrs["code.function"] = func.__qualname__
            span_attrs["code.namespace"] = func.__module__ or ""
            if capture_args:
                try:
                    bound = signature.bind_partial(*args, **kwargs)
                except TypeError:
                    # Let the call itself raise the signature error.
                    return span_attrs
                bound.apply_defaults()
                span_attrs.update(_capture_args(bound, skip_args_set))
            return span_attrs

        def _record_error(span, exc: BaseException) -> None:
            span.set_attribute("error.type", type(exc).__name__)
            span.set_attribute("error.message", str(exc)[:MAX_VALUE_LENGTH])

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            tracer = _get_tracer(tracer_name or func.__module__ or "default")
            with tracer.start_as_current_span(
                span_name, kind=kind, attributes=_span_attributes(args, kwargs)
            ) as span:
                try:
                    result = func(*args, **kwargs)
                except Exception as exc:
                    _record_error(span, exc)
                    raise
                if not skip_result:
                    span.set_attribute("result", _to_attribute_value(result))
                return result

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            tracer = _get_tracer(tracer_name or func.__module__ or "default")
            async with tracer.start_as_current_span(
                span_name, kind=kind, attributes=_span_attributes(args, kwargs)
            ) as span:
                try:
                    result = await func(*args, **kwargs)
                except Exception as exc:
                    _record_error(span, exc)
                    raise
                if not skip_result:
                    span.set_attribute("result", _to_attribute_value(result))
                return result

        return async_wrapper if is_coro else sync_wrapper

    return decorator


def _get_tracer(name: str):
    from tracelet.tracer.provider import get_tracer_provider

    return get_tracer_provider().get_tracer(name)
