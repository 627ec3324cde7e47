"""Attribute validation and the bounded attribute container used by spans."""

from __future__ import annotations

import logging
from collections import OrderedDict
from collections.abc import MutableMapping
from types import MappingProxyType
from typing import Any, Iterator, Mapping, Optional, Sequence, Union

logger = logging.getLogger(__name__)

AttributeValue = Union[
    str,
    bool,
    int,
    float,
    Sequence[str],
    Sequence[bool],
    Sequence[int],
    Sequence[float],
]
Attributes = Optional[Mapping[str, AttributeValue]]

_VALID_TYPES = (bool, str, int, float)


def _truncate(value: Any, max_len: Optional[int]) -> Any:
    if max_len is not None and isinstance(value, str):
        return value[:max_len]
    return value


def clean_attribute(key: str, value: Any, max_len: Optional[int] = None) -> Optional[Any]:
    """
    Validate and normalize an attribute value.

    Returns the value to store (sequences become tuples), or None if the
    attribute must be dropped. Never raises.
    """
    if not isinstance(key, str) or not key:
        logger.warning("Invalid attribute key: expected non-empty str")
        return None

    if isinstance(value, _VALID_TYPES):
        return _truncate(value, max_len)

    if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
        element_type = None
        cleaned = []
        for element in value:
            if element is None:
                cleaned.append(None)
                continue
            if not isinstance(element, _VALID_TYPES):
                logger.warning(
                    f"Invalid type {type(element).__name__} in sequence for attribute {key!r}"
                )
                return None
            # bool is a subclass of int; keep them apart
            current = bool if isinstance(element, bool) else type(element)
            if element_type is None:
                element_type = current
            elif element_type is not current:
                logger.warning(f"Mixed types in sequence for attribute {key!r}")
                return None
            cleaned.append(_truncate(element, max_len))
        return tuple(cleaned)

    logger.warning(
        f"Invalid type {type(value).__name__} for attribute {key!r}; "
        "expected bool, str, int, float or a sequence of them"
    )
    return None


class BoundedAttributes(MutableMapping):
    """
    Insertion-ordered attribute map holding at most ``maxlen`` keys.

    Once full, new keys are dropped and counted in ``dropped``; overwriting
    an existing key is always allowed. Spans are single-writer, so
    the map takes no lock.
    """

    def __init__(
        self,
        maxlen: Optional[int] = None,
        attributes: Attributes = None,
        max_value_len: Optional[int] = None,
    ) -> None:
        if maxlen is not None and (not isinstance(maxlen, int) or maxlen < 0):
            raise ValueError("maxlen must be a non-negative int or None")
        self.maxlen = maxlen
        self.max_value_len = max_value_len
        self.dropped = 0
        self._dict: "OrderedDict[str, Any]" = OrderedDict()
        if attributes:
            for key, value in attributes.items():
                self[key] = value

    def __repr__(self) -> str:
        return f"{dict(self._dict)}"

    def __getitem__(self, key: str) -> Any:
        return self._dict[key]

    def __setitem__(self, key: str, value: Any) -> None:
        if self.maxlen is not None and self.maxlen == 0:
            self.dropped += 1
            return
        cleaned = clean_attribute(key, value, self.max_value_len)
        if cleaned is None:
            return
        if key in self._dict:
            self._dict[key] = cleaned
        elif self.maxlen is not None and len(self._dict) >= self.maxlen:
            self.dropped += 1
        else:
            self._dict[key] = cleaned

    def __delitem__(self, key: str) -> None:
        del self._dict[key]

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._dict))

    def __len__(self) -> int:
        return len(self._dict)

    def freeze(self) -> Mapping[str, Any]:
        """Return a read-only copy of the current contents."""
        return MappingProxyType(dict(self._dict))
