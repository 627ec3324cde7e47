"""W3C ``tracestate``: an ordered, bounded list of vendor entries."""

from __future__ import annotations

import logging
import re
from typing import Iterator, List, Mapping, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

MAX_ENTRIES = 32
MAX_HEADER_LENGTH = 512
# Entries longer than this are the first to go when the header is too long.
_LARGE_ENTRY_LENGTH = 128

_KEY_SIMPLE = r"[a-z][_0-9a-z\-\*\/]{0,255}"
_KEY_TENANT = r"[a-z0-9][_0-9a-z\-\*\/]{0,240}@[a-z][_0-9a-z\-\*\/]{0,13}"
_KEY_PATTERN = re.compile(rf"^(?:{_KEY_SIMPLE}|{_KEY_TENANT})$")
_VALUE_PATTERN = re.compile(r"^[\x20-\x2b\x2d-\x3c\x3e-\x7e]{0,255}[\x21-\x2b\x2d-\x3c\x3e-\x7e]$")
_MEMBER_PATTERN = re.compile(
    rf"^[ \t]*({_KEY_SIMPLE}|{_KEY_TENANT})=([\x20-\x2b\x2d-\x3c\x3e-\x7e]{{0,255}}[\x21-\x2b\x2d-\x3c\x3e-\x7e])[ \t]*$"
)


def is_valid_key(key: str) -> bool:
    return isinstance(key, str) and _KEY_PATTERN.match(key) is not None


def is_valid_value(value: str) -> bool:
    return isinstance(value, str) and _VALUE_PATTERN.match(value) is not None


class TraceState(Mapping[str, str]):
    """
    Immutable ordered mapping of vendor keys to opaque values.

    The leftmost entry is the most recently added or updated one. Mutating
    operations return a new instance; invalid input is logged and leaves the
    state unchanged rather than raising.
    """

    def __init__(self, entries: Optional[Sequence[Tuple[str, str]]] = None) -> None:
        self._entries: "dict[str, str]" = {}
        if not entries:
            return
        if len(entries) > MAX_ENTRIES:
            logger.warning(
                f"tracestate has {len(entries)} entries, limit is {MAX_ENTRIES}; discarding"
            )
            return
        for key, value in entries:
            if not (is_valid_key(key) and is_valid_value(value)):
                logger.warning(f"Invalid tracestate entry {key!r}={value!r}; discarding tracestate")
                self._entries = {}
                return
            if key in self._entries:
                logger.warning(f"Duplicate tracestate key {key!r}; discarding tracestate")
                self._entries = {}
                return
            self._entries[key] = value

    def __getitem__(self, key: str) -> str:
        return self._entries[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __hash__(self) -> int:
        return hash(tuple(self._entries.items()))

    def __eq__(self, other: object) -> bool:
        if isinstance(other, TraceState):
            return list(self._entries.items()) == list(other._entries.items())
        return NotImplemented

    def __repr__(self) -> str:
        pairs = ", ".join(f"{k!r}: {v!r}" for k, v in self._entries.items())
        return f"TraceState({{{pairs}}})"

    def add(self, key: str, value: str) -> "TraceState":
        """Add a new entry at the front. Existing keys are left untouched."""
        if key in self._entries:
            logger.warning(f"tracestate key {key!r} already present; use update()")
            return self
        if not (is_valid_key(key) and is_valid_value(value)):
            logger.warning(f"Invalid tracestate entry {key!r}={value!r}; ignoring")
            return self
        if len(self._entries) >= MAX_ENTRIES:
            logger.warning("tracestate is full; ignoring new entry")
            return self
        return TraceState([(key, value)] + list(self._entries.items()))

    def update(self, key: str, value: str) -> "TraceState":
        """Set ``key`` to ``value`` and move it to the front."""
        if key not in self._entries:
            return self.add(key, value)
        if not is_valid_value(value):
            logger.warning(f"Invalid tracestate value {value!r}; ignoring")
            return self
        rest = [(k, v) for k, v in self._entries.items() if k != key]
        return TraceState([(key, value)] + rest)

    def delete(self, key: str) -> "TraceState":
        if key not in self._entries:
            return self
        return TraceState([(k, v) for k, v in self._entries.items() if k != key])

    def to_header(self) -> str:
        """Serialize to a header value no longer than ``MAX_HEADER_LENGTH``."""
        members = [f"{k}={v}" for k, v in self._entries.items()]
        header = ",".join(members)
        if len(header) <= MAX_HEADER_LENGTH:
            return header
        # Shed oversized entries from the right first, then anything from the right.
        for index in range(len(members) - 1, -1, -1):
            if len(",".join(members)) <= MAX_HEADER_LENGTH:
                break
            if len(members[index]) > _LARGE_ENTRY_LENGTH:
                del members[index]
        while members and len(",".join(members)) > MAX_HEADER_LENGTH:
            members.pop()
        return ",".join(members)

    @classmethod
    def from_header(cls, header_list: Sequence[str]) -> "TraceState":
        """
        Parse one or more ``tracestate`` header values.

        Any malformed member invalidates the whole header, in which case an
        empty TraceState is returned.
        """
        pairs: List[Tuple[str, str]] = []
        seen = set()
        for header in header_list:
            for member in header.split(","):
                if not member.strip():
                    continue
                match = _MEMBER_PATTERN.match(member)
                if match is None:
                    logger.debug(f"Malformed tracestate member {member!r}")
                    return cls()
                key, value = match.group(1), match.group(2)
                if key in seen:
                    logger.debug(f"Duplicate tracestate key {key!r}")
                    return cls()
                seen.add(key)
                pairs.append((key, value))
        if len(pairs) > MAX_ENTRIES:
            logger.debug(f"tracestate has {len(pairs)} entries, limit is {MAX_ENTRIES}")
            return cls()
        return cls(pairs)
