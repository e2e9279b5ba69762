# src/bgtasks/logging_setup.py

from __future__ import annotations

"""
Process-wide logging for apps that embed the scheduler.

stderr gets lifecycle lines (created / running / completed / failed / cancelled);
the log file under log_dir gets everything, including per-tick progress and slot
handoffs, so a stuck queue can be reconstructed afterwards.
"""

import logging
import sys
from pathlib import Path

LOG_FILE_NAME = "bgtasks.log"

# Loggers that emit one DEBUG line per progress report or slot handoff.
_CHATTY_LOGGERS = frozenset(
    {
        "bgtasks.tasks.task_scheduler",
        "bgtasks.tasks.task_runner",
    }
)


class _ConsoleNoiseFilter(logging.Filter):
    """Console gate: bgtasks lifecycle at the handler level, others only at ERROR."""

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name

        if name.startswith("bgtasks."):
            if name in _CHATTY_LOGGERS:
                return record.levelno >= logging.INFO
            return True

        # py.warnings and executor libraries (HTTP clients, SDKs) alike.
        return record.levelno >= logging.ERROR


def setup_logging(
    *,
    log_dir: str | Path = ".local/bgtasks",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> Path:
    """
    Install the stderr and file handlers on the root logger, replacing any
    existing ones. Returns the path of the task log.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(fmt)
    console.addFilter(_ConsoleNoiseFilter())
    root.addHandler(console)

    task_log = logging.FileHandler(str(log_file), encoding="utf-8")
    task_log.setLevel(file_level)
    task_log.setFormatter(fmt)
    root.addHandler(task_log)

    # Deprecation warnings from executor code end up in the task log too.
    logging.captureWarnings(True)

    return log_file
