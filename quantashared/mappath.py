"""Retrieve values from nested maps and lists by slash-separated path."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

_INDEX_RE = re.compile(r"[+-]?[0-9]+")


class PathError(LookupError):
    """A path element could not be resolved."""


def get_path(path: str, data: Any) -> Any:
    """Walk ``data`` along ``path`` (keys and list indices split by '/')."""
    value = data
    for key in path.split("/"):
        value = _get(key, value)
    return value


def _get(key: str, node: Any) -> Any:
    if isinstance(node, Mapping):
        try:
            return node[key]
        except KeyError:
            raise PathError(f"Key not present. [Key:{key}]") from None
    if isinstance(node, (list, tuple)):
        if not _INDEX_RE.fullmatch(key):
            raise PathError(f"Invalid array index. [Index:{key}]")
        index = int(key)
        if 0 <= index < len(node):
            return node[index]
        raise PathError(f"Index out of bounds. [Index:{index}] [Array:{list(node)}]")
    # Scalars have no children: the walk yields nothing without failing.
    return None