"""Structured JSON log output."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone

_LEVEL_NAMES = {
    logging.CRITICAL: "FATAL",
    logging.ERROR: "ERROR",
    logging.WARNING: "WARN",
    logging.INFO: "INFO",
    logging.DEBUG: "DEBUG",
}

_LEVEL_WORDS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
    "critical": logging.CRITICAL,
}

_HTML_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


def _dumps(document: dict[str, str]) -> str:
    text = json.dumps(document, ensure_ascii=False, separators=(",", ":"))
    for char, escape in _HTML_ESCAPES.items():
        text = text.replace(char, escape)
    return text


class JsonFormatter(logging.Formatter):
    """Render each record as one JSON object; empty fields other than msg are left out."""

    def __init__(
        self,
        environment: str = "",
        svc_name: str = "",
        version: str = "",
        product: str = "",
    ) -> None:
        super().__init__()
        self.environment = environment
        self.svc_name = svc_name
        self.version = version
        self.product = product

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc).strftime(
            "%Y-%m-%dT%H:%M:%SZ"
        )
        fields = {
            "env": self.environment,
            "level": _LEVEL_NAMES.get(record.levelno, ""),
            "svc_name": self.svc_name,
            "svc_ver": self.version,
            "product": self.product,
            "timestamp": timestamp,
        }
        document = {key: value for key, value in fields.items() if value}
        document["msg"] = message
        return _dumps(document)


class _JsonStreamHandler(logging.StreamHandler):
    """Writes JSON lines and ends the process after a fatal record."""

    def emit(self, record: logging.LogRecord) -> None:
        super().emit(record)
        if record.levelno >= logging.CRITICAL:
            self.flush()
            raise SystemExit(1)


def init_logging(
    level: str,
    environment: str,
    svc_name: str,
    version: str,
    product: str,
) -> logging.Handler:
    """Send root logging to stdout as JSON at ``level``; call as early as possible."""
    try:
        numeric_level = _LEVEL_WORDS[level.strip().lower()]
    except KeyError:
        raise ValueError(f"unknown log level {level!r}") from None

    root = logging.getLogger()
    for existing in [h for h in root.handlers if isinstance(h, _JsonStreamHandler)]:
        root.removeHandler(existing)

    handler = _JsonStreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter(environment, svc_name, version, product))
    root.addHandler(handler)
    root.setLevel(numeric_level)
    return handler