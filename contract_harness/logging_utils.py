"""Logging for the orchestrator and its worker processes.

Console output goes through ``rich``; an optional JSON-lines file collects the
records of every process in the run. Each record carries the test file of the
worker that emitted it (``"orchestrator"`` for the parent process), so the
interleaved lines of concurrent workers can be told apart.
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

ROOT_LOGGER = "contract_harness"
ORCHESTRATOR_SCOPE = "orchestrator"

# Optional ``extra=`` keys copied into JSON lines when present.
_EXTRA_FIELDS = ("event", "contract", "failures", "duration")


class WorkerScopeFilter(logging.Filter):
    """Stamp records with the test file a worker is running."""

    def __init__(self, test_file: Optional[str] = None) -> None:
        super().__init__()
        self.scope = Path(test_file).name if test_file else ORCHESTRATOR_SCOPE

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "test_file"):
            record.test_file = self.scope
        return True


class StructuredJsonFormatter(logging.Formatter):
    """One JSON object per record, keyed by process and test file."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "pid": record.process,
            "test_file": getattr(record, "test_file", ORCHESTRATOR_SCOPE),
            "message": record.getMessage(),
        }
        for key in _EXTRA_FIELDS:
            if hasattr(record, key):
                payload[key] = getattr(record, key)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(
    log_file: Optional[str] = None,
    *,
    level: int | str = logging.INFO,
    test_file: Optional[str] = None,
) -> Logger:
    """Attach console (and optionally file) handlers to the harness logger.

    Args:
        log_file: JSON-lines file shared by the orchestrator and all workers;
            opened in append mode.
        level: Level applied to the harness logger.
        test_file: Set inside a worker; console lines are prefixed with it.

    Returns:
        The harness logger.
    """

    context = WorkerScopeFilter(test_file)
    console = RichHandler(console=Console(stderr=True), show_time=False, show_path=False)
    console.setFormatter(logging.Formatter("[%(test_file)s] %(message)s" if test_file else "%(message)s"))
    console.addFilter(context)

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()
    logger.addHandler(console)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        file_handler.setFormatter(StructuredJsonFormatter())
        file_handler.addFilter(context)
        logger.addHandler(file_handler)

    logger.debug("Logging configured for %s", context.scope, extra={"event": "logging.configured"})
    return logger


__all__ = [
    "ORCHESTRATOR_SCOPE",
    "ROOT_LOGGER",
    "StructuredJsonFormatter",
    "WorkerScopeFilter",
    "configure_logging",
]
