"""
Structured Logging - structlog configuration for the ring buffer library.

Provides console and rotating file output, JSON rendering for production,
compact hex rendering of byte payloads, and a timing helper for bulk
operations.
"""

from __future__ import annotations

import logging
import sys
import time
from pathlib import Path
from typing import Any, Dict

import structlog

HEX_PREVIEW_BYTES = 32


# ---------------------------------------------------------------------------
# Byte Payload Renderer
# ---------------------------------------------------------------------------

def _render_bytes(_, __, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Render bytes-like values as a short hex preview instead of a repr."""
    for key, value in event_dict.items():
        if isinstance(value, (bytes, bytearray, memoryview)):
            raw = bytes(value[:HEX_PREVIEW_BYTES])
            preview = raw.hex(" ")
            if len(value) > HEX_PREVIEW_BYTES:
                preview += f" ... ({len(value)} bytes)"
            event_dict[key] = preview
    return event_dict


# ---------------------------------------------------------------------------
# Performance Timer
# ---------------------------------------------------------------------------

class PerformanceTimer:
    """Context manager for measuring and logging operation duration."""

    def __init__(self, logger: Any, operation: str, **kwargs):
        self.logger = logger
        self.operation = operation
        self.kwargs = kwargs
        self.start_time: float = 0
        self.elapsed_ms: float = 0

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.elapsed_ms = (time.perf_counter() - self.start_time) * 1000
        if exc_type:
            self.logger.error(
                f"{self.operation} failed",
                duration_ms=round(self.elapsed_ms, 2),
                error=str(exc_val),
                **self.kwargs
            )
        else:
            level = "warning" if self.elapsed_ms > 1000 else "debug"
            getattr(self.logger, level)(
                f"{self.operation} completed",
                duration_ms=round(self.elapsed_ms, 2),
                **self.kwargs
            )
        return False


# ---------------------------------------------------------------------------
# Logger Setup
# ---------------------------------------------------------------------------

def setup_logging(
    log_level: str = "INFO",
    log_dir: str = "logs",
    json_output: bool = False
) -> None:
    """
    Configure the structured logging system.

    Sets up:
    - Console output with colors (or JSON for production)
    - File output with rotation
    - Error-level separate file
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    level = getattr(logging, log_level.upper(), logging.INFO)

    from logging.handlers import RotatingFileHandler

    main_handler = RotatingFileHandler(
        log_path / "bytering.log", encoding="utf-8",
        maxBytes=10 * 1024 * 1024, backupCount=3,
    )
    main_handler.setLevel(level)

    error_handler = RotatingFileHandler(
        log_path / "errors.log", encoding="utf-8",
        maxBytes=5 * 1024 * 1024, backupCount=3,
    )
    error_handler.setLevel(logging.ERROR)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    # Close and remove existing handlers to avoid duplicates and FD leaks
    for h in root_logger.handlers[:]:
        h.close()
        root_logger.removeHandler(h)
    root_logger.addHandler(main_handler)
    root_logger.addHandler(error_handler)
    root_logger.addHandler(console_handler)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        _render_bytes,
    ]

    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=True,
            pad_event=40,
        )

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=shared_processors,
    )

    for handler in root_logger.handlers:
        handler.setFormatter(formatter)


def configure_default_logging() -> None:
    """
    Quiet defaults for callers that never run setup_logging.

    structlog's own defaults print every level to stdout; library code logs
    debug events on hot paths, so anything below INFO is dropped until the
    application configures logging itself.
    """
    if structlog.is_configured():
        return
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(logging.INFO),
    )


configure_default_logging()


def get_logger(name: str = "bytering") -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance with the given name."""
    return structlog.get_logger(name)


def log_performance(logger: Any, operation: str, **kwargs) -> PerformanceTimer:
    """Create a performance timing context manager."""
    return PerformanceTimer(logger, operation, **kwargs)
