"""Baggage: immutable key-value pairs propagated alongside the trace context."""

from __future__ import annotations

from types import MappingProxyType
from typing import Mapping, Optional

from opentelemetry import context as context_api
from opentelemetry.context import Context

_BAGGAGE_KEY = context_api.create_key("tracelet-baggage")


def get_all(context: Optional[Context] = None) -> Mapping[str, str]:
    baggage = context_api.get_value(_BAGGAGE_KEY, context=context)
    if isinstance(baggage, dict):
        return MappingProxyType(baggage)
    return MappingProxyType({})


def get_baggage(name: str, context: Optional[Context] = None) -> Optional[str]:
    return get_all(context).get(name)


def set_baggage(name: str, value: str, context: Optional[Context] = None) -> Context:
    """Return a new Context whose baggage has ``name`` set to ``value``."""
    baggage = dict(get_all(context))
    baggage[name] = value
    return context_api.set_value(_BAGGAGE_KEY, baggage, context=context)


def remove_baggage(name: str, context: Optional[Context] = None) -> Context:
    baggage = dict(get_all(context))
    baggage.pop(name, None)
    return context_api.set_value(_BAGGAGE_KEY, baggage, context=context)


def clear(context: Optional[Context] = None) -> Context:
    return context_api.set_value(_BAGGAGE_KEY, {}, context=context)
