"""Log output for worker processes."""

import json
import logging
import sys
from datetime import UTC, datetime
from typing import IO, Any

from .config import WorkerConfig

LOGGER_NAME = "forkq"


class WorkerFormatter(logging.Formatter):
    """Human-readable worker log lines.

    verbose:      `*** message`
    very verbose: `** [15:44:33 2011-03-02] 4242: message`
    """

    def __init__(self, very_verbose: bool = False) -> None:
        super().__init__()
        self.very_verbose = very_verbose

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        if self.very_verbose:
            stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S %Y-%m-%d")
            line = f"** [{stamp}] {record.process}: {message}"
        else:
            line = f"*** {message}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


class JsonFormatter(logging.Formatter):
    """Formats log records as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON line."""
        entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname.lower(),
            "message": record.getMessage(),
            "logger": record.name,
            "pid": record.process,
        }

        # Include exception info if present
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)

        return json.dumps(entry)


def configure_logging(
    config: WorkerConfig | None = None,
    *,
    verbose: bool = False,
    very_verbose: bool = False,
    json_logs: bool = False,
    stream: IO[str] | None = None,
) -> logging.Handler:
    """
    Route `forkq` logs to a single stderr handler.

    Args:
        config: Worker configuration; its flags override the keyword arguments
        verbose: Log job activity at INFO
        very_verbose: Log everything at DEBUG with timestamps and pids
        json_logs: Emit JSON lines instead of text
        stream: Output stream (defaults to stderr)

    Returns:
        The installed handler
    """
    if config is not None:
        verbose = config.verbose
        very_verbose = config.very_verbose
        json_logs = config.json_logs

    handler = logging.StreamHandler(stream or sys.stderr)
    if json_logs:
        handler.setFormatter(JsonFormatter())
    elif very_verbose or verbose:
        handler.setFormatter(WorkerFormatter(very_verbose=very_verbose))
    else:
        handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))

    if very_verbose:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING

    logger = logging.getLogger(LOGGER_NAME)
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return handler
