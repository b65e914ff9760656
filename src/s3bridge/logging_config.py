"""Logging setup for s3bridge.

Two kinds of records carry structured fields passed via ``extra=``:

- request lines from the server middleware: method, path, status,
  duration_ms, request_id
- stream lines from the proxy engine: mount, bucket, s3_key, transforms,
  bytes_sent

Both formatters render whichever of these fields a record has; the text
formatter appends them as ``key=value`` pairs.
"""

import json
import logging
import sys
from datetime import datetime, timezone

REQUEST_FIELDS = ("method", "path", "status", "duration_ms", "request_id")
STREAM_FIELDS = ("mount", "bucket", "s3_key", "transforms", "bytes_sent")

_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def record_fields(record: logging.LogRecord) -> dict:
    """Return the structured fields set on ``record``, in a stable order."""
    fields = {}
    for key in REQUEST_FIELDS + STREAM_FIELDS:
        val = getattr(record, key, None)
        if val is not None:
            fields[key] = val
    return fields


class JSONFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message, fields."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(record_fields(record))
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class KeyValueFormatter(logging.Formatter):
    """Plain text lines with the proxy's structured fields appended."""

    def __init__(self) -> None:
        super().__init__(_TEXT_FORMAT)

    def formatMessage(self, record: logging.LogRecord) -> str:
        line = super().formatMessage(record)
        fields = record_fields(record)
        if fields:
            line += " " + " ".join(f"{k}={v}" for k, v in fields.items())
        return line


def configure_logging(level: str = "INFO", fmt: str = "text") -> None:
    """Install a single stderr handler on the root logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        fmt: 'text' for key=value lines, 'json' for one JSON object per line.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(numeric_level)

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(numeric_level)
    handler.setFormatter(JSONFormatter() if fmt == "json" else KeyValueFormatter())
    root.addHandler(handler)
