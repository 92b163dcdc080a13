"""
Structured logging utilities

JSON-formatted log lines for the events worth grepping later:

- One line per archive request (timing, entry counts)
- One line per skipped entry (name, stage, cause)
- Context managers for timing operations
"""
import logging
import json
import time
from typing import Optional
from contextlib import contextmanager


class StructuredLogger:
    """
    Logger that outputs structured JSON for important events.

    Usage:
        logger = StructuredLogger(__name__)
        logger.info("Manifest resolved", ref="abc", entries=3)
    """

    def __init__(self, name: str):
        """
        Initialize the structured logger.

        Args:
            name: Logger name (typically __name__)
        """
        self.logger = logging.getLogger(name)

    def _log(self, log_level: int, message: str, **fields):
        """Internal logging method with JSON formatting"""
        data = {
            **fields,
            "message": message,
            "timestamp": time.time()
        }
        self.logger.log(log_level, json.dumps(data, default=str))

    def info(self, message: str, **fields):
        """Log at INFO level with structured fields"""
        self._log(logging.INFO, message, level="info", **fields)

    def warning(self, message: str, **fields):
        """Log at WARNING level with structured fields"""
        self._log(logging.WARNING, message, level="warning", **fields)

    def error(self, message: str, **fields):
        """Log at ERROR level with structured fields"""
        self._log(logging.ERROR, message, level="error", **fields)

    def debug(self, message: str, **fields):
        """Log at DEBUG level with structured fields"""
        self._log(logging.DEBUG, message, level="debug", **fields)


@contextmanager
def log_duration(operation: str, logger: Optional[StructuredLogger] = None, **extra_fields):
    """
    Context manager to log operation duration.

    Usage:
        with log_duration("manifest_lookup", ref=ref):
            raw = await redis.get(key)

    Args:
        operation: Name of the operation being timed
        logger: Optional StructuredLogger (creates one if not provided)
        **extra_fields: Additional fields to include in the log
    """
    if logger is None:
        logger = get_logger("timing")

    start = time.perf_counter()
    error_occurred = None
    try:
        yield
    except Exception as e:
        error_occurred = str(e)
        raise
    finally:
        duration_ms = (time.perf_counter() - start) * 1000
        if error_occurred:
            logger.error(
                f"{operation} failed",
                operation=operation,
                duration_ms=round(duration_ms, 2),
                error=error_occurred,
                **extra_fields
            )
        else:
            logger.debug(
                f"{operation} completed",
                operation=operation,
                duration_ms=round(duration_ms, 2),
                **extra_fields
            )


def log_archive_request(
    method: str,
    path: str,
    duration_ms: float,
    entries_written: int,
    entries_skipped: int,
    bytes_read: int,
    aborted: bool = False,
    ref: Optional[str] = None,
    logger: Optional[StructuredLogger] = None
):
    """
    Log a finished archive request.

    Emitted once per request after the central directory has been
    flushed, or after the client went away mid-stream.

    Args:
        method: HTTP method
        path: Request path including query string
        duration_ms: Wall time from manifest lookup to last byte
        entries_written: Entries that made it into the archive
        entries_skipped: Entries dropped (open or read failure)
        bytes_read: Total source bytes copied into the archive
        aborted: Whether the sink failed before the archive was finished
        ref: Manifest reference key
        logger: Optional StructuredLogger (creates one if not provided)
    """
    if logger is None:
        logger = get_logger("zipper.requests")

    log_data = {
        "event": "archive_request",
        "method": method,
        "path": path,
        "ref": ref,
        "duration_ms": round(duration_ms, 2),
        "entries_written": entries_written,
        "entries_skipped": entries_skipped,
        "bytes_read": bytes_read,
        "aborted": aborted,
    }

    if aborted:
        logger.warning("Archive request aborted", **log_data)
    else:
        logger.info("Archive request completed", **log_data)


def log_entry_skipped(
    archive_path: str,
    stage: str,
    reason: str,
    source: Optional[str] = None,
    logger: Optional[StructuredLogger] = None
):
    """
    Log a manifest entry left out of (or truncated in) the archive.

    Args:
        archive_path: Name the entry had (or would have had) in the archive
        stage: "open" when the source never opened, "read" when it failed mid-copy
        reason: Human-readable cause
        source: Local path or URL the entry was read from
        logger: Optional StructuredLogger (creates one if not provided)
    """
    if logger is None:
        logger = get_logger("zipper.entries")

    logger.warning(
        f"Error loading \"{archive_path}\"",
        event="entry_skipped",
        archive_path=archive_path,
        stage=stage,
        reason=reason,
        source=source,
    )


def get_logger(name: str) -> StructuredLogger:
    """
    Get a structured logger instance.

        from zipper.core.logging import get_logger
        logger = get_logger(__name__)
        logger.info("Something happened", ref="123")

    Args:
        name: Logger name (typically __name__)

    Returns:
        StructuredLogger instance
    """
    return StructuredLogger(name)
