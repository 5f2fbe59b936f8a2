"""Logging setup for workflow executions.

Every record emitted while an execution is running carries the workflow and
execution ids bound with ``bind_execution``; the JSON formatter flattens
those fields next to the message so log lines can be filtered per run.
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

# Noisy third-party loggers and the level they are capped at
QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "sqlalchemy.pool": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "asyncio": logging.WARNING,
}

# Per asyncio task; each execution binds its own ids
_execution_fields: ContextVar[Dict[str, Any]] = ContextVar("agency_workflows_execution_fields", default={})


class ExecutionJsonFormatter(logging.Formatter):
    """Renders a record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }
        entry.update(getattr(record, "extra_fields", {}))
        return json.dumps(entry, default=str)


class ExecutionContextFilter(logging.Filter):
    """Copies the bound execution fields onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        fields = dict(_execution_fields.get())
        fields.update(getattr(record, "extra_fields", {}))
        record.extra_fields = fields
        return True


def configure_logging(config) -> logging.Logger:
    """Install console (and optional rotating file) handlers on the root logger from an AppConfig."""
    if config.structured_logging:
        formatter: logging.Formatter = ExecutionJsonFormatter()
    else:
        formatter = logging.Formatter(fmt=config.log_format, datefmt="%Y-%m-%d %H:%M:%S")

    handlers = [logging.StreamHandler(sys.stdout)]
    if config.log_file:
        Path(config.log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(
            config.log_file,
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=LOG_FILE_BACKUPS
        ))

    context_filter = ExecutionContextFilter()
    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(context_filter)
        root.addHandler(handler)
    root.setLevel(config.log_level.value)

    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)

    return root


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def bind_execution(**fields):
    """Attach fields (workflow_id, execution_id, ...) to every record logged by the current task."""
    _execution_fields.set({**_execution_fields.get(), **fields})


def unbind_execution():
    _execution_fields.set({})


def log_event(logger: logging.Logger, level: int, message: str, **fields):
    """Log ``message`` with ``fields`` attached as structured data."""
    logger.log(level, message, extra={"extra_fields": fields})


class ExecutionAuditLogger:
    """Writes the audit trail for finished and rejected workflow executions."""

    def __init__(self, channel: str = "executions"):
        self.channel = channel
        self.logger = get_logger(f"audit.{channel}")

    def log_execution_summary(
        self,
        workflow_id: str,
        execution_id: str,
        status: str,
        execution_time: float,
        nodes_executed: int,
        error_count: int,
        warning_count: int
    ):
        level = logging.WARNING if error_count else logging.INFO
        log_event(
            self.logger, level,
            f"Workflow {workflow_id} execution {execution_id} finished with status {status}",
            channel=self.channel,
            workflow_id=workflow_id,
            execution_id=execution_id,
            status=status,
            execution_time=execution_time,
            nodes_executed=nodes_executed,
            error_count=error_count,
            warning_count=warning_count
        )

    def log_rejected_execution(self, workflow_id: str, reason: str):
        log_event(
            self.logger, logging.WARNING,
            f"Workflow {workflow_id} execution rejected: {reason}",
            channel=self.channel,
            workflow_id=workflow_id,
            reason=reason
        )
