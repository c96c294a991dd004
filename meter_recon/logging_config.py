"""
Structured JSON logging for the reconciliation service.

``setup_logging()`` replaces the root logger's handlers with one stream
handler emitting a JSON object per line: ``timestamp``, ``level``,
``logger`` and ``message``, plus ``exception`` when the record carries a
traceback (best-effort cache and health probes log with ``exc_info``).

CHANGELOG:
- 2026-10-18: Include formatted exception text; accept level names
- 2026-10-18: Initial creation

TODO:
- None
"""

import json
import logging
from datetime import UTC, datetime


class JSONFormatter(logging.Formatter):
    """Formatter emitting one JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        """Format *record* as a single-line JSON string."""
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(level: int | str = logging.INFO) -> None:
    """Configure the root logger with structured JSON output.

    Args:
        level: Level number or name (``"DEBUG"``, ``"INFO"`` ...).
    """
    root = logging.getLogger()
    root.setLevel(level)

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    root.addHandler(handler)
