"""Map dataclass fields tagged with SQL column names to query text and rows."""

from __future__ import annotations

import dataclasses
import functools
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

from quantashared.convert import to_string

TAG_NAME = "sql"


def sql_field(column: str, **kwargs: Any) -> Any:
    """A dataclass field mapped to the SQL column ``column`` ("-" excludes it)."""
    metadata = dict(kwargs.pop("metadata", None) or {})
    metadata[TAG_NAME] = column
    return dataclasses.field(metadata=metadata, **kwargs)


def _dataclass_type(obj: Any) -> type:
    cls = obj if isinstance(obj, type) else type(obj)
    if not dataclasses.is_dataclass(cls):
        raise TypeError(f"expected a dataclass or dataclass instance; got {cls.__name__}")
    return cls


def _nested_dataclass(field: dataclasses.Field) -> type | None:
    """The dataclass type held by ``field``, judged by its type or its default."""
    if isinstance(field.type, type) and dataclasses.is_dataclass(field.type):
        return field.type
    factory = field.default_factory
    if isinstance(factory, type) and dataclasses.is_dataclass(factory):
        return factory
    default = field.default
    if default is not dataclasses.MISSING and dataclasses.is_dataclass(default):
        return type(default)
    return None


@functools.lru_cache(maxsize=None)
def _field_info(cls: type) -> Mapping[str, tuple[str, ...]]:
    info: dict[str, tuple[str, ...]] = {}
    for field in dataclasses.fields(cls):
        tag = field.metadata.get(TAG_NAME, "")
        if not tag or tag == "-" or field.name.startswith("_"):
            continue
        nested = _nested_dataclass(field)
        if nested is not None:
            for column, path in _field_info(nested).items():
                info[column] = (field.name, *path)
            continue
        info[tag.lower()] = (field.name,)
    return MappingProxyType(info)


def _get_path(obj: Any, path: tuple[str, ...]) -> Any:
    for name in path:
        obj = getattr(obj, name)
    return obj


def _set_path(obj: Any, path: tuple[str, ...], value: Any) -> None:
    setattr(_get_path(obj, path[:-1]), path[-1], value)


def column_list(obj: Any) -> list[str]:
    """Sorted column names defined by the tagged fields of ``obj``."""
    return sorted(_field_info(_dataclass_type(obj)))


def columns(obj: Any) -> str:
    """Sorted, comma-separated column names of ``obj``."""
    return ", ".join(column_list(obj))


def columns_aliased(obj: Any, alias: str) -> str:
    """Columns as ``alias.col AS alias_col``, for use with :func:`scan_aliased`."""
    return ", ".join(f"{alias}.{name} AS {alias}_{name}" for name in column_list(obj))


def generate_sql_insert(table: str, obj: Any) -> str:
    """An insert statement with one ``?`` placeholder per column of ``obj``."""
    names = column_list(obj)
    placeholders = ", ".join("?" for _ in names)
    return f"insert into {table} ({', '.join(names)}) values ({placeholders})"


def bind_params(obj: Any) -> list[Any]:
    """Field values of ``obj`` in the order of :func:`column_list`."""
    if isinstance(obj, type):
        raise TypeError("bind_params needs an instance, not a class")
    info = _field_info(_dataclass_type(obj))
    return [_get_path(obj, info[name]) for name in sorted(info)]


def _do_scan(dest: Any, cursor: Any, alias: str) -> bool:
    if isinstance(dest, type):
        raise TypeError("dest must be a dataclass instance; got a class")
    info = _field_info(_dataclass_type(dest))
    if cursor.description is None:
        raise ValueError("cursor has no result columns")
    names = [column[0] for column in cursor.description]
    row = cursor.fetchone()
    if row is None:
        return False
    for name, value in zip(names, row):
        if alias:
            name = name.replace(f"{alias}_", "", 1)
        path = info.get(name.lower())
        if path is not None:
            _set_path(dest, path, value)
    return True


def scan(dest: Any, cursor: Any) -> bool:
    """Read the next row into ``dest``; False when no row is left.

    Columns without a matching field are ignored; fields without a matching
    column keep their values.
    """
    return _do_scan(dest, cursor, "")


def scan_aliased(dest: Any, cursor: Any, alias: str) -> bool:
    """Like :func:`scan`, for columns named ``alias_column``."""
    return _do_scan(dest, cursor, alias)


def to_snake_case(src: str) -> str:
    """Insert underscores before each run of capitals, then lower-case."""
    parts: list[str] = []
    prev_upper = False
    for position, char in enumerate(src):
        this_upper = "A" <= char <= "Z"
        if position > 0 and this_upper and not prev_upper:
            parts.append("_")
        prev_upper = this_upper
        parts.append(char)
    return "".join(parts).lower()


def get_all_rows(cursor: Any) -> list[dict[str, str]]:
    """All remaining rows as column-to-text maps, dropping NULLs and empty rows."""
    names = [column[0] for column in cursor.description or ()]
    rows: list[dict[str, str]] = []
    for row in cursor:
        record: dict[str, str] = {}
        for name, value in zip(names, row):
            if value is None:
                continue
            if isinstance(value, (bytes, bytearray, memoryview)):
                text = bytes(value).decode("utf-8", errors="replace")
            else:
                text = to_string(value)
            if text != "NULL":
                record[name] = text
        if record:
            rows.append(record)
    return rows