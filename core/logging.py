# ============================================================================
# STRUCTURED LOGGING
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Core - Structured logging with batch/task context
# PURPOSE: Consistent, queryable logging across discovery, execution and workers
# CREATED: 12 OCT 2026
# ============================================================================
"""
Structured Logging

Every log line emitted while a batch is running carries the batch id,
and while a task is running the task identity, kind and record id.

Usage:
    from core.logging import get_logger, log_context

    logger = get_logger("orchestrator.sequential")

    with log_context(batch_id="b-1", task="2024_01_15_120000_backfill"):
        logger.info("Running task")

Output format is selected by configure_logging() or LOG_FORMAT=json.
"""

import json
import logging
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, Optional, Union


class ComponentType(str, Enum):
    """Component types for logging categorization."""
    ORCHESTRATOR = "orchestrator"
    DISCOVERY = "discovery"
    WORKER = "worker"
    REPOSITORY = "repository"
    SERVICE = "service"
    MESSAGING = "messaging"
    INFRASTRUCTURE = "infrastructure"
    CLI = "cli"


# Fields shown inline by HumanFormatter and copied into checkpoints
_SHORT_FIELDS = (("batch_id", "batch"), ("task", "task"), ("record_id", "record"))


@dataclass
class LogContext:
    """Contextual fields attached to every record logged inside log_context()."""
    batch_id: Optional[str] = None
    task: Optional[str] = None
    kind: Optional[str] = None
    record_id: Optional[int] = None
    correlation_id: Optional[str] = None
    component: Optional[str] = None
    operation: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict, excluding None values."""
        result = {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name != "extra" and getattr(self, f.name) is not None
        }
        if self.extra:
            result.update(self.extra)
        return result

    def merged(self, **overrides: Any) -> "LogContext":
        """Child context: overrides win, unset fields inherit."""
        values = {
            f.name: overrides.get(f.name, getattr(self, f.name))
            for f in fields(self)
            if f.name != "extra"
        }
        values["extra"] = {**self.extra, **overrides.get("extra", {})}
        return LogContext(**values)


# Each asyncio task sees the context active when it was created
_current: ContextVar[LogContext] = ContextVar("sequencer_log_context", default=LogContext())


def get_current_context() -> LogContext:
    """Context in effect for the running task."""
    return _current.get()


@contextmanager
def log_context(**kwargs: Any) -> Iterator[LogContext]:
    """
    Push logging context for the duration of the block.

    Args:
        **kwargs: LogContext fields; unknown keys belong in extra={...}

    Example:
        with log_context(batch_id=batch_id):
            with log_context(task=task.identity, kind=task.kind.value):
                logger.info("Running")
    """
    new_context = get_current_context().merged(**kwargs)
    token = _current.set(new_context)
    try:
        yield new_context
    finally:
        _current.reset(token)


def _utc_stamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class StructuredFormatter(logging.Formatter):
    """JSON formatter for log aggregators."""

    def __init__(self, include_context: bool = True, include_source: bool = True):
        super().__init__()
        self.include_context = include_context
        self.include_source = include_source

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": _utc_stamp(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if self.include_context:
            context_dict = get_current_context().to_dict()
            if context_dict:
                log_data["context"] = context_dict

        if getattr(record, "extra", None):
            log_data["data"] = record.extra

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if self.include_source:
            log_data["source"] = {
                "file": record.filename,
                "line": record.lineno,
                "function": record.funcName,
            }

        return json.dumps(log_data, default=str)


class HumanFormatter(logging.Formatter):
    """Readable single-line formatter for terminals."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        level = record.levelname.ljust(8)

        context = get_current_context()
        context_parts = [
            f"{label}={getattr(context, name)}"
            for name, label in _SHORT_FIELDS
            if getattr(context, name) is not None
        ]
        context_str = f" [{', '.join(context_parts)}]" if context_parts else ""

        extra_str = ""
        if getattr(record, "extra", None):
            extra_str = f" {record.extra}"

        result = f"{timestamp} {level} {record.name}{context_str}: {record.getMessage()}{extra_str}"

        if record.exc_info:
            result += f"\n{self.formatException(record.exc_info)}"

        return result


class ContextLogger(logging.LoggerAdapter):
    """Logger adapter that folds the current LogContext into each record."""

    def process(self, msg, kwargs):
        extra = dict(kwargs.get("extra", {}))
        if self.extra and self.extra.get("component"):
            extra.setdefault("component", str(self.extra["component"].value))
        extra.update(get_current_context().to_dict())
        kwargs["extra"] = {"extra": extra}
        return msg, kwargs


def get_logger(
    name: str,
    component: Optional[ComponentType] = None,
) -> ContextLogger:
    """
    Get a context-aware logger.

    Args:
        name: Logger name (e.g., "orchestrator.sequential")
        component: Optional component type for categorization
    """
    return ContextLogger(logging.getLogger(name), {"component": component})


def configure_logging(
    level: Union[str, int] = "INFO",
    json_output: bool = False,
) -> None:
    """
    Configure the root logger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_output: Use JSON format (also enabled by LOG_FORMAT=json)
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    if json_output or os.getenv("LOG_FORMAT", "").lower() == "json":
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = HumanFormatter()

    root = logging.getLogger()
    root.setLevel(level)

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root.addHandler(handler)

    # Azure SDK is chatty at INFO
    logging.getLogger("azure").setLevel(logging.WARNING)


# ============================================================================
# CHECKPOINT LOGGING
# ============================================================================

def log_checkpoint(
    name: str,
    data: Optional[Dict[str, Any]] = None,
    logger: Optional[logging.Logger] = None,
) -> None:
    """
    Log a named checkpoint (batch_started, task_completed, rollback_completed...).

    Args:
        name: Checkpoint name
        data: Optional checkpoint data
        logger: Optional specific logger to use
    """
    if logger is None:
        logger = logging.getLogger("checkpoint")

    checkpoint_data: Dict[str, Any] = {"checkpoint": name, "timestamp": _utc_stamp()}

    context = get_current_context()
    for field_name, _label in _SHORT_FIELDS:
        value = getattr(context, field_name)
        if value is not None:
            checkpoint_data[field_name] = value

    if data:
        checkpoint_data["data"] = data

    logger.info(f"CHECKPOINT: {name}", extra={"extra": checkpoint_data})


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "ComponentType",
    "LogContext",
    "StructuredFormatter",
    "HumanFormatter",
    "ContextLogger",
    "get_logger",
    "configure_logging",
    "log_context",
    "get_current_context",
    "log_checkpoint",
]
