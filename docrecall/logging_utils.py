"""Logging setup: colored console output plus an optional rotating log file."""

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

import colorlog

BASE_LOGGER = "docrecall"
CONSOLE_HANDLER = "docrecall.console"
FILE_HANDLER = "docrecall.file"


def _ensure_parent_dir(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Return a logger under the ``docrecall`` namespace.

    Module names that already start with the package name are used as-is,
    so ``get_logger(__name__)`` works from inside the package.
    """
    if not name or name == BASE_LOGGER:
        return logging.getLogger(BASE_LOGGER)
    if name.startswith(BASE_LOGGER + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{BASE_LOGGER}.{name}")


def _has_handler(logger: logging.Logger, name: str) -> bool:
    return any(h.get_name() == name for h in logger.handlers)


def configure_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> logging.Logger:
    """
    Attach console (and optionally file) handlers to the package logger.

    Safe to call more than once. Handlers added here are tagged by name, so
    a repeat call adds nothing already present, and a later call with
    ``log_file`` still gets its file handler. Handlers attached by anyone
    else are left alone. Library code never calls this, entry points
    (CLI, API) do.
    """
    logger = logging.getLogger(BASE_LOGGER)

    if not _has_handler(logger, CONSOLE_HANDLER):
        handler = logging.StreamHandler()
        handler.set_name(CONSOLE_HANDLER)
        formatter = colorlog.ColoredFormatter(
            fmt=(
                "%(log_color)s%(asctime)s [%(levelname)s] "
                "%(name)s:%(lineno)d:%(reset)s %(message_log_color)s%(message)s"
            ),
            datefmt="%Y-%m-%d %H:%M:%S",
            log_colors={
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "bold_red",
            },
            secondary_log_colors={
                "message": {
                    "INFO": "white",
                    "WARNING": "yellow",
                    "ERROR": "light_red",
                    "CRITICAL": "red",
                }
            },
            style="%",
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    log_to_file = os.getenv("DOCRECALL_LOG_TO_FILE", "0").lower() in ("1", "true", "yes", "y")
    log_file = log_file or os.getenv("DOCRECALL_LOG_FILE")

    if (log_to_file or log_file) and not _has_handler(logger, FILE_HANDLER):
        log_path = Path(log_file or "./logs/docrecall.log")
        _ensure_parent_dir(log_path)

        max_bytes = int(os.getenv("DOCRECALL_LOG_MAX_BYTES", str(5 * 1024 * 1024)))
        backup_count = int(os.getenv("DOCRECALL_LOG_BACKUP_COUNT", "5"))

        file_handler = RotatingFileHandler(
            filename=str(log_path),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.set_name(FILE_HANDLER)
        file_handler.setFormatter(logging.Formatter(
            fmt="%(asctime)s [%(levelname)s] %(name)s:%(lineno)d: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        logger.addHandler(file_handler)

    logger.propagate = False

    level_name = (level or os.getenv("DOCRECALL_LOG_LEVEL", "INFO")).upper()
    logger.setLevel(getattr(logging, level_name, logging.INFO))
    return logger
