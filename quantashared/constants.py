"""Shared timing defaults, time formats and field data types."""

from __future__ import annotations

from datetime import timedelta
from enum import IntEnum

# gRPC calls should complete within this interval.
DEADLINE = timedelta(minutes=60)
# Synchronize calls should complete within this interval.
SYNC_DEADLINE = timedelta(minutes=60)
# Interval between cluster membership poll operations.
DEFAULT_POLL_INTERVAL = timedelta(seconds=5)
# Interval between synchronization attempts.
SYNC_RETRY_INTERVAL = timedelta(seconds=1)

# strftime/strptime patterns for year-month-day-hour and year-month-day.
YMDH_TIME_FMT = "%Y-%m-%dT%H"
YMD_TIME_FMT = "%Y-%m-%d"


class DataType(IntEnum):
    """Field data types."""

    NOT_EXIST = 0
    STRING = 1
    INTEGER = 2
    FLOAT = 3
    DATE = 4
    DATE_TIME = 5
    BOOLEAN = 6
    JSON = 7
    NOT_DEFINED = 8

    def __str__(self) -> str:
        return _TYPE_NAMES[self]


_TYPE_NAMES = {
    DataType.NOT_EXIST: "NotExist",
    DataType.STRING: "String",
    DataType.INTEGER: "Integer",
    DataType.FLOAT: "Float",
    DataType.DATE: "Date",
    DataType.DATE_TIME: "DateTime",
    DataType.BOOLEAN: "Boolean",
    DataType.JSON: "JSON",
    DataType.NOT_DEFINED: "NotDefined",
}

_TYPES_BY_NAME = {name: data_type for data_type, name in _TYPE_NAMES.items()}


def data_type_from_string(name: str) -> DataType:
    """Return the DataType named by ``name``; unknown names give NOT_DEFINED."""
    return _TYPES_BY_NAME.get(name, DataType.NOT_DEFINED)