"""
Utility functions for ciorch.

Includes logging setup, run identifiers and timestamps.
"""

import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler


# Console for diagnostics; protocol lines go to stdout via click.echo
console = Console(stderr=True)


def setup_logging(log_file: Path, log_level: str = "INFO", log_format: str = "structured", console_output: bool = False) -> logging.Logger:
    """
    Set up logging for an orchestrator invocation.

    Args:
        log_file: Path to log file
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: "structured" (JSON) or "pretty" (human-readable)
        console_output: Also log to console (stderr)

    Returns:
        Configured logger
    """
    logger = logging.getLogger("ciorch")
    logger.setLevel(getattr(logging, log_level.upper()))
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    # File handler; a run without a writable log dir still logs to console
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
    except OSError as e:
        console.print(f"[bold yellow]⚠[/bold yellow] orchestrator log unavailable: {e}")
        file_handler = None

    if file_handler is not None:
        if log_format == "structured":
            file_handler.setFormatter(StructuredFormatter())
        else:
            file_handler.setFormatter(
                logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            )
        logger.addHandler(file_handler)

    if console_output:
        if log_format == "pretty":
            console_handler = RichHandler(console=console, rich_tracebacks=True, show_time=False)
        else:
            console_handler = logging.StreamHandler()
            console_handler.setFormatter(
                logging.Formatter("%(levelname)s: %(message)s")
            )

        logger.addHandler(console_handler)

    return logger


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add extra fields if present
        if hasattr(record, "step"):
            log_data["step"] = record.step
        if hasattr(record, "event"):
            log_data["event"] = record.event
        if hasattr(record, "metadata"):
            log_data["metadata"] = record.metadata

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def generate_run_id() -> str:
    """
    Generate a time-derived run identifier.

    Format: run-<unix seconds>-<milliseconds>, e.g. run-1760659200-042.
    """
    now_ns = time.time_ns()
    seconds, remainder = divmod(now_ns, 1_000_000_000)
    return f"run-{seconds}-{remainder // 1_000_000:03d}"


def now_epoch_string() -> str:
    """Current UTC time as whole unix seconds, as a string."""
    return str(int(time.time()))


def elapsed_ms(started: float) -> int:
    """Milliseconds elapsed since a time.monotonic() reading."""
    return int((time.monotonic() - started) * 1000)


def format_duration(seconds: float) -> str:
    """
    Format duration in seconds to human-readable string.

    Args:
        seconds: Duration in seconds

    Returns:
        Formatted string (e.g., "1m 23s", "45s")
    """
    if seconds < 60:
        return f"{int(seconds)}s"

    minutes = int(seconds // 60)
    remaining_seconds = int(seconds % 60)

    if minutes < 60:
        return f"{minutes}m {remaining_seconds}s"

    hours = minutes // 60
    remaining_minutes = minutes % 60
    return f"{hours}h {remaining_minutes}m {remaining_seconds}s"
