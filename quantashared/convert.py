"""Value conversion, parameter parsing, retry and time-partition helpers."""

from __future__ import annotations

import logging
import math
import re
import time
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, TypeVar

from dateutil import parser as date_parser

from quantashared.constants import YMD_TIME_FMT, YMDH_TIME_FMT

log = logging.getLogger(__name__)

T = TypeVar("T")

_UINT64_MASK = (1 << 64) - 1


class ValueKind(Enum):
    """Kinds of values carried as raw bytes."""

    STRING = "string"
    UINT64 = "uint64"
    INT = "int"


def _format_float(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value == 0:
        return "-0" if math.copysign(1.0, value) < 0 else "0"
    sign = "-" if value < 0 else ""
    dec = Decimal(repr(abs(value))).normalize()
    _, digits, exp = dec.as_tuple()
    ndigits = len(digits)
    point = ndigits + exp
    exponent = point - 1
    eprec = 6
    if eprec > ndigits and ndigits >= point:
        eprec = ndigits
    if exponent < -4 or exponent >= eprec:
        text = "".join(map(str, digits))
        mantissa = text[0] + ("." + text[1:] if ndigits > 1 else "")
        esign = "-" if exponent < 0 else "+"
        return f"{sign}{mantissa}e{esign}{abs(exponent):02d}"
    return sign + format(dec, "f")


def to_string(value: Any) -> str:
    """Render any value as a string."""
    if isinstance(value, str):
        return value
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return _format_float(value)
    return str(value)


def to_bytes(value: Any) -> bytes:
    """Serialize a string or 64-bit integer for the wire."""
    if isinstance(value, str):
        return value.encode("utf-8")
    if isinstance(value, int) and not isinstance(value, bool):
        if not -(1 << 63) <= value <= _UINT64_MASK:
            raise OverflowError(f"integer {value} does not fit in 64 bits")
        return (value & _UINT64_MASK).to_bytes(8, "little")
    raise TypeError(f"Unsupported type {type(value).__name__}")


def unmarshal_value(kind: ValueKind, buf: bytes) -> Any:
    """Decode bytes produced by :func:`to_bytes` into a value of ``kind``."""
    if kind is ValueKind.STRING:
        return bytes(buf).decode("utf-8", errors="surrogateescape")
    if kind in (ValueKind.UINT64, ValueKind.INT):
        if len(buf) < 8:
            raise ValueError(f"need 8 bytes to decode {kind.value}, got {len(buf)}")
        return int.from_bytes(buf[:8], "little", signed=kind is ValueKind.INT)
    raise ValueError(f"Should not be here for kind [{kind}]!")


def retry(attempts: int, sleep: float | timedelta, func: Callable[[], T]) -> T:
    """Call ``func`` until it succeeds or ``attempts`` calls have failed."""
    delay = sleep.total_seconds() if isinstance(sleep, timedelta) else float(sleep)
    attempt = 0
    while True:
        try:
            return func()
        except Exception as err:  # noqa: BLE001 - any failure is retried
            if attempt >= attempts - 1:
                raise RuntimeError(f"after {attempts} attempts, last error: {err}") from err
            time.sleep(delay)
            log.error("retrying after error: %s", err)
        attempt += 1


_DIGITS_RE = re.compile(r"[0-9A-Za-z]+(?:_[0-9A-Za-z]+)*")


def _parse_int(text: str, bits: int) -> int:
    body = text
    negative = False
    if body[:1] in ("+", "-"):
        negative = body[0] == "-"
        body = body[1:]
    lowered = body.lower()
    base = 10
    if lowered.startswith("0x"):
        base, body = 16, body[2:]
    elif lowered.startswith("0b"):
        base, body = 2, body[2:]
    elif lowered.startswith("0o"):
        base, body = 8, body[2:]
    elif len(body) > 1 and body.startswith("0"):
        base, body = 8, body[1:]
    if not _DIGITS_RE.fullmatch(body):
        raise ValueError(f"invalid syntax: {text!r}")
    number = int(body, base)
    if negative:
        number = -number
    if not -(1 << (bits - 1)) <= number < (1 << (bits - 1)):
        raise ValueError(f"value out of range: {text!r}")
    return number


def get_int_param(params: Mapping[str, Any] | None, key: str) -> int:
    """Read an int from a parameter map; missing values give 0."""
    if params is None:
        return 0
    raw = params.get(key)
    if raw is None:
        return 0
    if isinstance(raw, int) and not isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        try:
            return _parse_int(raw, 32)
        except ValueError as err:
            raise ValueError(f"error parsing {key} - {err}") from err
    raise TypeError(f"unknown type {type(raw).__name__} for timeout")


_TRUE_WORDS = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE_WORDS = {"0", "f", "F", "FALSE", "false", "False"}


def get_bool_param(params: Mapping[str, Any] | None, key: str) -> bool:
    """Read a boolean from a parameter map; missing values give False."""
    if params is None:
        return False
    raw = params.get(key)
    if raw is None:
        return False
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        if raw in _TRUE_WORDS:
            return True
        if raw in _FALSE_WORDS:
            return False
        raise ValueError(f"error parsing {key} - invalid syntax: {raw!r}")
    raise TypeError(f"unknown type {type(raw).__name__} for timeout")


def _parse_timestamp(text: str) -> datetime:
    stripped = text.strip()
    if stripped.isdigit() and len(stripped) >= 10:
        number = int(stripped)
        if len(stripped) >= 19:
            seconds = number / 1e9
        elif len(stripped) >= 16:
            seconds = number / 1e6
        elif len(stripped) >= 13:
            seconds = number / 1e3
        else:
            seconds = float(number)
        return datetime.fromtimestamp(seconds, tz=timezone.utc).astimezone()
    try:
        parsed = date_parser.parse(stripped)
    except OverflowError as err:
        raise ValueError(f"cannot parse timestamp {text!r}: {err}") from err
    if parsed.tzinfo is None:
        parsed = parsed.astimezone()
    return parsed


def to_tq_timestamp(tq_type: str, timestamp: str) -> tuple[datetime, str]:
    """Return the partition time (UTC, truncated) and the YMDH string of ``timestamp``."""
    if tq_type:
        ts = _parse_timestamp(timestamp)
    else:
        ts = datetime.fromtimestamp(0, tz=timezone.utc).astimezone()
    fmt = YMDH_TIME_FMT if tq_type == "YMDH" else YMD_TIME_FMT
    partition = datetime.strptime(ts.strftime(fmt), fmt).replace(tzinfo=timezone.utc)
    return partition, ts.strftime(YMDH_TIME_FMT)