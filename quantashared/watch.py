"""Detect table create, modify and drop events from schema key listings."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import IntEnum
from typing import Union

Pairs = Union[Mapping[str, Union[bytes, str]], Iterable[tuple[str, Union[bytes, str]]]]

_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_MOD_TIME_SUFFIX = "modificationTime"


class EventType(IntEnum):
    """Kinds of schema change."""

    CREATE = 0
    MODIFY = 1
    DROP = 2


@dataclass(frozen=True)
class SchemaChangeEvent:
    """A change to one table's schema."""

    table: str
    event: EventType


def _items(pairs: Pairs) -> list[tuple[str, bytes | str]]:
    if isinstance(pairs, Mapping):
        return list(pairs.items())
    return list(pairs)


def _table_of(key: str) -> str | None:
    parts = key.split("/")
    return parts[1] if len(parts) > 1 else None


def _parse_rfc3339(raw: bytes | str) -> datetime:
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, (bytes, bytearray)) else raw
    if len(text) < 11 or text[10] not in "Tt":
        return _ZERO_TIME
    if text[-1] in "Zz":
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text[:10] + "T" + text[11:])
    except ValueError:
        return _ZERO_TIME
    if parsed.tzinfo is None:
        return _ZERO_TIME
    return parsed


def unique_tables(pairs: Pairs) -> set[str]:
    """Names of all tables that have at least one key under ``schema/<table>``."""
    tables = set()
    for key, _ in _items(pairs):
        table = _table_of(key)
        if table is not None:
            tables.add(table)
    return tables


def mod_time_map(pairs: Pairs) -> dict[str, datetime]:
    """Each table's modification time; unparsable times become the zero time."""
    times: dict[str, datetime] = {}
    for key, value in _items(pairs):
        if not key.endswith(_MOD_TIME_SUFFIX):
            continue
        table = _table_of(key)
        if table is not None:
            times[table] = _parse_rfc3339(value)
    return times


class SchemaWatcher:
    """Compares successive schema listings and reports changes to ``callback``."""

    def __init__(self, initial_pairs: Pairs, callback: Callable[[SchemaChangeEvent], None]) -> None:
        items = _items(initial_pairs)
        self.callback = callback
        self._tables = unique_tables(items)
        self._mod_times = mod_time_map(items)

    def handle(self, pairs: Pairs) -> list[SchemaChangeEvent]:
        """Process a new listing, call back for each change and return the changes."""
        items = _items(pairs)
        tables = unique_tables(items)
        mod_times = mod_time_map(items)

        events = [SchemaChangeEvent(t, EventType.DROP) for t in sorted(self._tables - tables)]
        events += [SchemaChangeEvent(t, EventType.CREATE) for t in sorted(tables - self._tables)]
        for table in sorted(mod_times):
            old = self._mod_times.get(table)
            if old is not None and old != _EPOCH and mod_times[table] > old:
                events.append(SchemaChangeEvent(table, EventType.MODIFY))

        for event in events:
            self.callback(event)
        self._tables = tables
        self._mod_times = mod_times
        return events