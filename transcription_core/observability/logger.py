"""Structured JSON logger.

Outputs JSON to stdout with severity, timestamp, and message fields, plus the
transcription context passed through ``extra``.
"""

import json
import logging
import sys
from datetime import UTC, datetime

EXTRA_FIELDS = (
    "provider",
    "job_id",
    "filename",
    "stage",
    "attempt",
    "status_code",
    "duration_seconds",
    "error",
)


class StructuredJsonFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    SEVERITY_MAP: dict[int, str] = {
        logging.DEBUG: "DEBUG",
        logging.INFO: "INFO",
        logging.WARNING: "WARNING",
        logging.ERROR: "ERROR",
        logging.CRITICAL: "CRITICAL",
    }

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as a JSON string.

        Args:
            record: The log record to format.

        Returns:
            JSON string with severity, timestamp, logger, message and extras.
        """
        log_entry: dict[str, object] = {
            "timestamp": datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "severity": self.SEVERITY_MAP.get(record.levelno, "DEFAULT"),
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in EXTRA_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value

        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = str(record.exc_info[1])

        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger with structured JSON output.

    Args:
        level: Root log level name.
    """
    root = logging.getLogger()
    root.setLevel(level)

    # Avoid adding duplicate handlers if called multiple times
    if not any(
        isinstance(h.formatter, StructuredJsonFormatter) for h in root.handlers
    ):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredJsonFormatter())
        root.addHandler(handler)
