"""Logging and observability utilities for VibeSpec.

Everything logs below the ``vibespec`` logger. The console handler writes to
stderr because stdout carries the MCP stdio protocol. Status changes are
published as named events through :data:`observability_hooks` so callers can
attach their own listeners.
"""

from __future__ import annotations

import json
import logging as std_logging
import os
import sys
import time
from collections import deque
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Deque, Dict, Iterator, List, Optional, Union

ROOT_LOGGER = "vibespec"
LOG_LEVEL_ENV = "VIBESPEC_LOG_LEVEL"
LOG_FILE_ENV = "VIBESPEC_LOG_FILE"

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(funcName)s:%(lineno)d - %(message)s"

# Events emitted by the status manager and metadata index.
STATUS_EVENTS = (
    "status_created",
    "status_written",
    "status_inferred",
    "spec_archived",
    "spec_restored",
    "spec_renamed",
    "index_updated",
)


def setup_logging(
    log_level: Union[str, int] = std_logging.INFO,
    log_file: Optional[Union[str, Path]] = None,
) -> std_logging.Logger:
    """Configure the ``vibespec`` logger.

    Replaces any handlers installed by an earlier call. ``log_file`` adds a
    DEBUG-level handler that writes one JSON object per line.
    """
    if isinstance(log_level, str):
        log_level = log_level.strip().upper() or "INFO"

    logger = std_logging.getLogger(ROOT_LOGGER)
    logger.setLevel(log_level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = std_logging.StreamHandler(sys.stderr)
    console.setLevel(log_level)
    console.setFormatter(std_logging.Formatter(fmt=CONSOLE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(console)

    if log_file:
        file_handler = std_logging.FileHandler(Path(log_file).expanduser(), encoding="utf-8")
        file_handler.setLevel(std_logging.DEBUG)
        file_handler.setFormatter(JsonFormatter())
        logger.addHandler(file_handler)

    logger.debug(f"Logging configured (level={std_logging.getLevelName(logger.level)}, file={log_file or '-'})")
    return logger


def configure_from_env() -> std_logging.Logger:
    """Configure logging from ``VIBESPEC_LOG_LEVEL`` and ``VIBESPEC_LOG_FILE``."""
    return setup_logging(
        log_level=os.getenv(LOG_LEVEL_ENV, "INFO"),
        log_file=os.getenv(LOG_FILE_ENV) or None,
    )


class JsonFormatter(std_logging.Formatter):
    """One JSON object per record, with ``extra_fields`` merged in."""

    def format(self, record: std_logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
            "message": record.getMessage(),
        }

        extra = getattr(record, "extra_fields", None)
        if extra:
            entry.update(extra)

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class PerformanceMonitor:
    """Keep the most recent duration samples per store operation."""

    def __init__(self, max_samples: int = 100):
        self.max_samples = max_samples
        self._samples: Dict[str, Deque[Dict[str, Any]]] = {}

    def record_metric(self, name: str, value: float, tags: Optional[Dict[str, str]] = None) -> None:
        sample = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "name": name,
            "value": value,
            "tags": dict(tags or {}),
        }
        self._samples.setdefault(name, deque(maxlen=self.max_samples)).append(sample)
        std_logging.getLogger("vibespec.performance").debug(
            f"{name}={value:.6f}", extra={"extra_fields": sample}
        )

    def get_metrics(self, name: Optional[str] = None) -> Dict[str, List[Dict[str, Any]]]:
        """Recorded samples, oldest first; all metrics when ``name`` is None."""
        if name is not None:
            return {name: list(self._samples.get(name, ()))}
        return {key: list(samples) for key, samples in self._samples.items()}

    def clear(self) -> None:
        self._samples.clear()


performance_monitor = PerformanceMonitor()


def log_performance(operation_name: str):
    """Decorator recording ``<operation_name>_duration`` for each call."""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            started = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                performance_monitor.record_metric(
                    f"{operation_name}_duration",
                    time.perf_counter() - started,
                    {"status": "error", "error_type": type(e).__name__},
                )
                raise
            performance_monitor.record_metric(
                f"{operation_name}_duration",
                time.perf_counter() - started,
                {"status": "success"},
            )
            return result

        return wrapper
    return decorator


@contextmanager
def log_operation(operation_name: str, **fields: Any) -> Iterator[None]:
    """Log the start and outcome of a multi-step status operation.

    Failures are logged as warnings and re-raised unchanged.
    """
    logger = std_logging.getLogger("vibespec.operations")
    started = time.perf_counter()
    base = {"operation": operation_name, **fields}

    logger.info(f"Starting operation: {operation_name}", extra={"extra_fields": {**base, "status": "started"}})
    try:
        yield
    except Exception as e:
        duration = time.perf_counter() - started
        logger.warning(
            f"Failed operation: {operation_name} after {duration:.3f}s - {e}",
            extra={"extra_fields": {
                **base,
                "status": "failed",
                "duration": duration,
                "error_type": type(e).__name__,
                "error_message": str(e),
            }},
        )
        raise

    duration = time.perf_counter() - started
    logger.info(
        f"Completed operation: {operation_name} in {duration:.3f}s",
        extra={"extra_fields": {**base, "status": "completed", "duration": duration}},
    )


class ObservabilityHooks:
    """Per-event callbacks for status events."""

    def __init__(self):
        self.hooks: Dict[str, List[Callable[..., None]]] = {}
        self.logger = std_logging.getLogger("vibespec.observability")

    def register_hook(self, event_type: str, callback: Callable[..., None]) -> None:
        if event_type not in STATUS_EVENTS:
            self.logger.warning(f"Registering hook for unknown event: {event_type}")
        self.hooks.setdefault(event_type, []).append(callback)

    def unregister_hook(self, event_type: str, callback: Callable[..., None]) -> None:
        callbacks = self.hooks.get(event_type, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def trigger_hooks(self, event_type: str, **data: Any) -> None:
        """Call every hook for ``event_type``.

        A failing hook is logged and never interrupts the status operation
        that emitted the event.
        """
        for hook in list(self.hooks.get(event_type, [])):
            try:
                hook(**data)
            except Exception as e:
                self.logger.error(f"Hook failed for event {event_type}: {e}")

    def log_status_event(self, event_type: str, session_id: Optional[str] = None, **data: Any) -> None:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "session_id": session_id,
            **data,
        }
        self.logger.info(
            f"Status event: {event_type} ({session_id or 'no session'})",
            extra={"extra_fields": {"event_type": event_type, **payload}},
        )
        self.trigger_hooks(event_type, **payload)


observability_hooks = ObservabilityHooks()


def log_error_with_context(error: Exception, context: Dict[str, Any], **extra_fields: Any) -> None:
    """Log an unexpected failure at a tool boundary, with traceback."""
    std_logging.getLogger("vibespec.errors").error(
        f"Error in {context.get('operation', 'unknown operation')}: {error}",
        extra={"extra_fields": {
            "error_type": type(error).__name__,
            "error_message": str(error),
            "context": context,
            **extra_fields,
        }},
        exc_info=True,
    )
