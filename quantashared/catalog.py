"""Table schema storage in a hierarchical key/value store.

Schemas live under ``schema/<table>/...``: scalar settings are stored one per
key, attributes under ``attributes/<fieldName>/`` and enumerated values under
``values/<value>/``.  Cluster settings live under ``config/``.
"""

from __future__ import annotations

import dataclasses
import os
import posixpath
import re
import threading
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Protocol, runtime_checkable

import yaml

from quantashared.convert import ValueKind, to_bytes, to_string, unmarshal_value
from quantashared.schema import (
    BasicAttribute,
    BasicTable,
    EnumValue,
    SchemaError,
    table_from_dict,
)

SCHEMA_ROOT = "schema"
CLUSTER_SIZE_TARGET_KEY = "config/clusterSizeTarget"

_LIST_ELEMENTS: dict[str, type] = {"attributes": BasicAttribute, "values": EnumValue}
_UNSIGNED_TAGS = frozenset({"rowID"})
_PATH_TAGS = frozenset({"fieldName", "value"})
_INT_RE = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1


@runtime_checkable
class KVStore(Protocol):
    """A hierarchical key/value store with prefix queries."""

    def put(self, key: str, value: bytes | str) -> None:
        """Store ``value`` under ``key``."""

    def get(self, key: str) -> bytes | None:
        """The value stored under ``key``, or None."""

    def keys(self, prefix: str) -> list[str]:
        """All keys starting with ``prefix``, sorted."""

    def list(self, prefix: str) -> list[tuple[str, bytes]]:
        """All key/value pairs whose key starts with ``prefix``, sorted by key."""

    def delete_tree(self, prefix: str) -> None:
        """Remove every key starting with ``prefix``."""


class MemoryKVStore:
    """An in-process :class:`KVStore`."""

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def put(self, key: str, value: bytes | str) -> None:
        """Store ``value`` under ``key``."""
        data = value.encode("utf-8") if isinstance(value, str) else bytes(value)
        with self._lock:
            self._data[key] = data

    def get(self, key: str) -> bytes | None:
        """The value stored under ``key``, or None."""
        with self._lock:
            return self._data.get(key)

    def keys(self, prefix: str) -> list[str]:
        """All keys starting with ``prefix``, sorted."""
        with self._lock:
            return sorted(key for key in self._data if key.startswith(prefix))

    def list(self, prefix: str) -> list[tuple[str, bytes]]:
        """All key/value pairs whose key starts with ``prefix``, sorted by key."""
        with self._lock:
            return sorted(
                (key, value) for key, value in self._data.items() if key.startswith(prefix)
            )

    def delete_tree(self, prefix: str) -> None:
        """Remove every key starting with ``prefix``."""
        with self._lock:
            for key in [key for key in self._data if key.startswith(prefix)]:
                del self._data[key]


def load_schema(path: str, name: str, kv: KVStore | None) -> BasicTable:
    """Load and validate a table from ``<path>/<name>/schema.yaml``, or from ``kv`` if no path."""
    if path:
        with open(os.path.join(path, name, "schema.yaml"), encoding="utf-8") as handle:
            document = yaml.safe_load(handle)
        table = table_from_dict(document or {})
    else:
        if kv is None:
            raise ValueError("a key/value store is required to load a schema by name")
        try:
            table = unmarshal_table(kv, name)
        except ValueError as err:
            raise SchemaError(f"Error UnmarshalConsul: {err}") from err
    table.kv = kv
    return table.finalize()


def _render(value: Any) -> bytes:
    return to_bytes(value if isinstance(value, str) else to_string(value))


def _put_recursive(obj: Any, kv: KVStore, root: str) -> None:
    for field in dataclasses.fields(obj):
        tag = field.metadata.get("yaml")
        if not tag:
            continue
        value = getattr(obj, field.name)
        if tag in _LIST_ELEMENTS:
            for item in value or ():
                _put_recursive(item, kv, f"{root}/{tag}")
            continue
        if field.metadata.get("omitempty") and not value:
            continue
        if tag == "tableName":
            continue
        if tag in _PATH_TAGS:
            if not isinstance(value, str):
                raise TypeError(f"{tag} must be a string to form a key, got {value!r}")
            root = f"{root}/{value}"
        if tag == "configuration":
            for key, item in (value or {}).items():
                kv.put(f"{root}/{tag}/{key}", to_bytes(str(item)))
            continue
        kv.put(f"{root}/{tag}", _render(value))


def marshal_table(table: BasicTable, kv: KVStore) -> None:
    """Write ``table`` into ``kv`` under ``schema/<name>``."""
    _put_recursive(table, kv, f"{SCHEMA_ROOT}/{table.name}")


def _scalar_kind(field: dataclasses.Field) -> str:
    default = field.default
    if isinstance(default, bool):
        return "bool"
    if isinstance(default, int):
        return "int"
    if isinstance(default, str):
        return "str"
    return "any"


def _parse_int64(text: str) -> int | None:
    if not _INT_RE.fullmatch(text):
        return None
    number = int(text)
    if not _INT64_MIN <= number <= _INT64_MAX:
        return None
    return number


def _get_recursive(obj: Any, kv: KVStore, root: str) -> None:
    for field in dataclasses.fields(obj):
        tag = field.metadata.get("yaml")
        if not tag:
            continue
        if tag in _LIST_ELEMENTS:
            element = _LIST_ELEMENTS[tag]
            path = f"{root}/{tag}"
            keys = kv.keys(path)
            if not keys:
                continue
            items = []
            for key in keys:
                if path.endswith("values") and key.endswith("value"):
                    item = element()
                    _get_recursive(item, kv, key[: -len("/value")])
                    items.append(item)
                if key.endswith("fieldName"):
                    item = element()
                    _get_recursive(item, kv, key[: -len("/fieldName")])
                    items.append(item)
            setattr(obj, field.name, items)
            continue
        if tag == "configuration":
            pairs = kv.list(f"{root}/{tag}")
            if pairs:
                setattr(
                    obj,
                    field.name,
                    {posixpath.basename(key): value.decode("utf-8") for key, value in pairs},
                )
            continue
        if tag == "tableName":
            continue
        raw = kv.get(f"{root}/{tag}")
        if raw is None:
            continue
        text = raw.decode("utf-8", errors="replace")
        kind = _scalar_kind(field)
        if kind == "bool":
            setattr(obj, field.name, text == "true")
        elif kind == "int":
            number = _parse_int64(text)
            if tag in _UNSIGNED_TAGS:
                if number is not None:
                    setattr(obj, field.name, number & ((1 << 64) - 1))
                else:
                    setattr(obj, field.name, unmarshal_value(ValueKind.UINT64, raw))
            elif number is not None:
                setattr(obj, field.name, number)
        else:
            setattr(obj, field.name, text)


def unmarshal_table(kv: KVStore, name: str) -> BasicTable:
    """Read the (unvalidated) table ``name`` from ``kv``."""
    table = BasicTable(name=name)
    _get_recursive(table, kv, f"{SCHEMA_ROOT}/{name}")
    return table


def table_exists(kv: KVStore, name: str) -> bool:
    """True if the table has been stored in ``kv``."""
    if not name:
        raise ValueError("table name must not be empty")
    return kv.get(f"{SCHEMA_ROOT}/{name}/primaryKey") is not None


def delete_table(kv: KVStore, name: str) -> None:
    """Remove the table's schema from ``kv``."""
    if not name:
        raise ValueError("table name must not be empty")
    kv.delete_tree(f"{SCHEMA_ROOT}/{name}")


def check_parent_relation(kv: KVStore, table: BasicTable | None) -> bool:
    """True if the table has no foreign keys or every referenced table exists."""
    if table is None:
        raise ValueError("table must not be nil")
    for attr in table.attributes:
        if attr.foreign_key and not table_exists(kv, attr.foreign_key):
            return False
    return True


def get_tables(kv: KVStore) -> list[str]:
    """Names of all stored tables, sorted."""
    tables = set()
    for key, _ in kv.list(SCHEMA_ROOT):
        parts = key.split("/")
        if len(parts) > 1:
            tables.add(parts[1])
    return sorted(tables)


def update_mod_time_for_table(kv: KVStore, table_name: str) -> None:
    """Record the current UTC time as the table's modification time."""
    current = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    kv.put(f"{SCHEMA_ROOT}/{table_name}/modificationTime", to_bytes(current))


def _deployed_fk_reference_map(kv: KVStore) -> dict[str, list[str]]:
    references: dict[str, list[str]] = defaultdict(list)
    for key, value in kv.list(SCHEMA_ROOT):
        if posixpath.basename(key) == "foreignKey":
            parts = key.split("/")
            if len(parts) > 1:
                references[value.decode("utf-8")].append(parts[1])
    return dict(references)


def check_child_relation(kv: KVStore, table_name: str) -> list[str]:
    """Tables whose foreign keys reference ``table_name``."""
    return list(_deployed_fk_reference_map(kv).get(table_name, []))


def get_cluster_size_target(kv: KVStore | None) -> int:
    """The configured target cluster size; 0 if it is not set."""
    if kv is None:
        raise ValueError("consul client is not provided")
    raw = kv.get(CLUSTER_SIZE_TARGET_KEY)
    if raw is None:
        return 0
    return unmarshal_value(ValueKind.INT, raw)


def set_cluster_size_target(kv: KVStore, size: int) -> None:
    """Set the target cluster size."""
    kv.put(CLUSTER_SIZE_TARGET_KEY, to_bytes(size))