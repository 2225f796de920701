"""Console and audit-trail logging for deployment runs.

Records emitted by the package carry an ``event`` name and a ``data``
mapping. The audit formatter lifts the fields an operator searches by, the
step, the component and the transaction, to the top level of each JSON line.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from logging import Logger
from pathlib import Path
from typing import Any, Dict, Optional

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "deployment_orchestrator"

# ``data`` key -> top-level audit field
_PROMOTED = (
    ("step", "step"),
    ("name", "component"),
    ("address", "address"),
    ("tx", "tx_hash"),
)


class RunContextFilter(logging.Filter):
    """Stamp every record with the network being deployed."""

    def __init__(self, network: str) -> None:
        super().__init__()
        self.network = network

    def filter(self, record: logging.LogRecord) -> bool:
        record.network = self.network
        return True


class StepConsoleFormatter(logging.Formatter):
    """Prefix console lines with the step they belong to."""

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        data = getattr(record, "data", None)
        step = data.get("step") if isinstance(data, dict) else None
        if step and str(step) not in message:
            return f"[{step}] {message}"
        return message


class StructuredJsonFormatter(logging.Formatter):
    """Formatter that emits one JSON object per record for the audit trail."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        data = getattr(record, "data", None)
        line: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "network": getattr(record, "network", None),
            "event": getattr(record, "event", None),
            "message": record.getMessage(),
        }
        if isinstance(data, dict):
            for key, field in _PROMOTED:
                if key in data:
                    line[field] = data[key]
        if data is not None:
            line["data"] = data
        if record.exc_info:
            line["exc_info"] = self.formatException(record.exc_info)
        return json.dumps({key: value for key, value in line.items() if value is not None}, default=str)


def configure_logging(
    log_file: Optional[str] = None,
    *,
    level: int = logging.INFO,
    network: Optional[str] = None,
) -> Logger:
    """Configure console logging and an optional JSON lines audit trail.

    Args:
        log_file: Optional path to a JSON lines file recording every step.
        level: Logging level applied to the package logger.
        network: Network name stamped on every record, when known.

    Returns:
        The configured package logger.
    """

    handlers = []
    console_handler = RichHandler(console=Console(stderr=True), show_time=False, show_path=False)
    console_handler.setFormatter(StepConsoleFormatter())
    handlers.append(console_handler)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(StructuredJsonFormatter())
        handlers.append(file_handler)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    for handler in handlers:
        # Handler filters also see records propagated from module loggers.
        if network is not None:
            handler.addFilter(RunContextFilter(network))
        logger.addHandler(handler)

    logger.debug("Logging configured", extra={"event": "logging_configured", "data": {"log_file": log_file}})
    return logger


__all__ = [
    "LOGGER_NAME",
    "RunContextFilter",
    "StepConsoleFormatter",
    "StructuredJsonFormatter",
    "configure_logging",
]
