"""Log formatters for JSON and console output."""

import json
import logging
import re
import sys
from datetime import UTC, date, datetime, timedelta
from pathlib import Path
from typing import Any

from core.logging.context import get_log_context


def json_serializer(obj: Any) -> Any:
    """
    Type-safe JSON fallback for values the json module cannot encode.

    - datetime/date -> ISO 8601 string
    - timedelta -> seconds as float
    - Path -> string
    - Enums -> value
    - frozenset/set -> sorted list of strings
    - Everything else -> string
    """
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, timedelta):
        return obj.total_seconds()
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(str(item) for item in obj)
    if hasattr(obj, "value"):
        return obj.value
    return str(obj)


# Structured fields picked up from `extra={...}`, with the type numeric ones
# are coerced to. None means the value is written as given.
LOG_FIELDS: dict[str, type | None] = {
    # Event identity
    "subject_id": None,
    "tenant_id": None,
    "source_address": None,
    "channel": None,
    "series_id": None,
    "event_timestamp": None,
    # Parsing
    "reason": None,
    "line": None,
    "log_file": None,
    # HTTP
    "http_status": int,
    "http_method": None,
    "http_url": None,
    "duration_ms": float,
    "status_code": int,
    # Errors
    "error_category": None,
    "error_message": None,
    "error_type": None,
    "exit_status": int,
    "consecutive_failures": int,
    # Pipeline
    "state": None,
    "cache_size": int,
    "evictions": int,
    "records_written": int,
    "events_received": int,
    "events_skipped": int,
    "enrichment_failures": int,
    "buffer_size": int,
    "workers": int,
    "cycle": int,
    # Metadata cache
    "cache_hits": int,
    "cache_misses": int,
    "hit_rate_pct": float,
}

URL_FIELDS = frozenset({"http_url"})

# user:password@ in the authority part, and credential-like query parameters
_URL_CREDENTIALS = re.compile(r"(://)[^/@\s]+:[^/@\s]*@")
_URL_SECRET_PARAMS = re.compile(r"([?&])(p|u|token|password|auth)=[^&]*", re.IGNORECASE)


def redact_url(url: str) -> str:
    url = _URL_CREDENTIALS.sub(r"\1[REDACTED]@", url)
    return _URL_SECRET_PARAMS.sub(r"\1\2=[REDACTED]", url)


def _field_value(name: str, value: Any) -> Any:
    """Coerced and redacted value of a structured field, None to drop it."""
    field_type = LOG_FIELDS[name]
    if field_type is not None:
        try:
            value = field_type(value)
        except (TypeError, ValueError):
            return None
    if name in URL_FIELDS and isinstance(value, str):
        value = redact_url(value)
    return value


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line, for jq and log shippers.

    Context variables come first; extras of the same name override them so a
    worker can log about an event of another tenant.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update((key, value) for key, value in get_log_context().items() if value)

        if record.levelno >= logging.ERROR or record.levelno == logging.DEBUG:
            entry["file"] = f"{record.filename}:{record.lineno}"

        for name in LOG_FIELDS:
            raw = getattr(record, name, None)
            if raw is None:
                continue
            value = _field_value(name, raw)
            if value is not None:
                entry[name] = value

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_value) if exc_value else None,
                "stacktrace": self.formatException(record.exc_info),
            }

        return json.dumps(entry, default=json_serializer, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """
    Single-line console output:

        2019-02-10 10:00:00 - INFO - [enrich] - [enrich-3] - [tenant:org1] message

    Levels are colored only when stdout is a terminal.
    """

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    # Subject ids are UUIDs; a prefix is enough to tell them apart
    SUBJECT_TAG_LENGTH = 12

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._use_colors = sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        context = get_log_context()

        level = record.levelname
        color = self.LEVEL_COLORS.get(record.levelno) if self._use_colors else None
        if color:
            level = f"{color}{level}{self.RESET}"

        parts = [datetime.now().strftime("%Y-%m-%d %H:%M:%S"), level]
        parts.extend(f"[{context[key]}]" for key in ("stage", "worker_id") if context[key])

        tenant_id = getattr(record, "tenant_id", None) or context["tenant_id"]
        subject_id = getattr(record, "subject_id", None) or context["subject_id"]
        message = record.getMessage()
        if subject_id:
            message = f"[subject:{subject_id[:self.SUBJECT_TAG_LENGTH]}] {message}"
        if tenant_id:
            message = f"[tenant:{tenant_id}] {message}"
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"

        parts.append(message)
        return " - ".join(parts)
