"""
logger.py
---------
Logging for the EAV Schema Migrator: an ``eav_migrator`` logger tree plus
JSON event lines for migration milestones.

Design Decisions:
    * Handlers are attached to ``eav_migrator`` on first import; engine
      modules log through ``get_logger(__name__)`` children and never
      configure handlers themselves.
    * Console output goes to stderr at ``LOG_LEVEL``. When ``LOG_FILE`` is
      set, a second handler records DEBUG and above with file/line detail.
    * Phase, batch and validation milestones go through ``log_event``: one
      JSON object per line, keys sorted, so a run can be filtered by
      ``migration_id`` after the fact.
"""
from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any

from config import CONFIG, get_log_level

_ROOT_LOGGER_NAME = "eav_migrator"
_CONSOLE_FORMAT = "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s"
_FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s (%(filename)s:%(lineno)d): %(message)s"
_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

_configured = False


def _console_handler(level: int) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=_CONSOLE_FORMAT, datefmt=_DATE_FORMAT))
    return handler


def _file_handler(path: Path) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(fmt=_FILE_FORMAT, datefmt=_DATE_FORMAT))
    return handler


def _configure_root_logger() -> None:
    global _configured
    if _configured:
        return
    _configured = True

    level = get_log_level()
    root = logging.getLogger(_ROOT_LOGGER_NAME)
    root.setLevel(level)
    root.addHandler(_console_handler(level))

    if CONFIG.migration.log_file:
        log_path = Path(CONFIG.migration.log_file)
        try:
            root.addHandler(_file_handler(log_path))
        except OSError as exc:
            root.warning("Log file '%s' unavailable, console only: %s", log_path, exc)


_configure_root_logger()


def get_logger(name: str) -> logging.Logger:
    """
    Logger named ``eav_migrator.<name>``.

    Example::

        log = get_logger(__name__)
        log.info("Resuming '%s' at batch %d", table, batch)
    """
    return logging.getLogger(f"{_ROOT_LOGGER_NAME}.{name}")


def log_event(logger: logging.Logger, level: int, event: str, **fields: Any) -> None:
    """
    Emit ``{"event": event, **fields}`` as a single JSON line.

    Values that are not JSON serialisable are rendered with ``str``.
    """
    if not logger.isEnabledFor(level):
        return
    payload = {"event": event, **fields}
    logger.log(level, json.dumps(payload, default=str, sort_keys=True))
