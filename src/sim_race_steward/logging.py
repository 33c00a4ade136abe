"""Process-wide logging setup.

Every module obtains its logger through `get_logger` so that output goes
to stderr with one shared format, regardless of whether the service was
started from the CLI, uvicorn or a test runner.

Environment variables:
  LOG_LEVEL  - root level (default INFO)
  LOG_FORMAT - optional format string override

Use:
    from sim_race_steward.logging import get_logger
    _LOGGER = get_logger(__name__)
    _LOGGER.info("[registry] session created %s", session_id)
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional

_CONFIGURED = False
_DEFAULT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
# Chatty third-party loggers kept at WARNING unless LOG_LEVEL=DEBUG.
_NOISY = ("nats", "uvicorn.access", "asyncio")


def _resolve_level(level: Optional[str]) -> int:
    name = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    return getattr(logging, name, logging.INFO)


def configure_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    """Install a single stderr handler on the root logger.

    Safe to call repeatedly: later calls only adjust the level.
    """
    global _CONFIGURED
    root = logging.getLogger()
    resolved = _resolve_level(level)

    if _CONFIGURED:
        root.setLevel(resolved)
        return

    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setFormatter(logging.Formatter(fmt or os.environ.get("LOG_FORMAT", _DEFAULT_FORMAT)))
    root.addHandler(handler)
    root.setLevel(resolved)
    if resolved > logging.DEBUG:
        for name in _NOISY:
            logging.getLogger(name).setLevel(logging.WARNING)
    _CONFIGURED = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger"]
