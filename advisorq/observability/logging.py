from __future__ import annotations

import logging
import os
from typing import Final

_HANDLER_ATTACHED: bool = False
_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_DATE_FORMAT: Final[str] = "%Y-%m-%d %H:%M:%S"


def _resolve_level(env_var: str = "ADVISORQ_LOG_LEVEL") -> int:
    level_name = os.getenv(env_var, "INFO").upper()
    return getattr(logging, level_name, logging.INFO)


def _attach_root_handler(level: int) -> None:
    global _HANDLER_ATTACHED

    root = logging.getLogger()
    if not _HANDLER_ATTACHED:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATE_FORMAT))
        root.addHandler(handler)
        _HANDLER_ATTACHED = True
    root.setLevel(level)


def get_logger(name: str) -> logging.Logger:
    """Return a module logger configured with a single stream handler."""
    level = _resolve_level()
    _attach_root_handler(level)

    logger = logging.getLogger(name)
    logger.setLevel(level)
    return logger


def get_diagnostics_logger() -> logging.Logger:
    """
    Logger for per-request advisor diagnostics.

    Diagnostics are always written at DEBUG; ADVISORQ_DIAGNOSTICS_LOG_LEVEL
    decides whether they reach the sink, independently of ADVISORQ_LOG_LEVEL.
    """
    _attach_root_handler(_resolve_level())
    logger = logging.getLogger("advisorq.diagnostics")
    logger.setLevel(_resolve_level("ADVISORQ_DIAGNOSTICS_LOG_LEVEL"))
    return logger
