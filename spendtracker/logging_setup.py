"""Central logging setup for the ``spendtracker`` package.

Entrypoints (the dashboard, scripts) call ``configure_logging()`` once.
Library modules only ever call ``get_logger(__name__)`` and never attach
handlers of their own.
"""

import logging
import os
import sys
from typing import IO, Optional, Union

_PKG_LOGGER_NAME = "spendtracker"
_LEVEL_ENV = "SPENDTRACKER_LOG_LEVEL"
_DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"
_configured = False


def _resolve_level(level: Union[int, str, None]) -> int:
    if level is None:
        level = os.getenv(_LEVEL_ENV) or logging.INFO
    if isinstance(level, int):
        return level
    name = level.strip().upper()
    if name.isdigit():
        return int(name)
    value = logging.getLevelName(name)
    return value if isinstance(value, int) else logging.INFO


def configure_logging(level: Union[int, str, None] = None, *, fmt: Optional[str] = None,
                      stream: IO[str] = sys.stderr) -> None:
    global _configured
    if _configured:
        return

    logger = logging.getLogger(_PKG_LOGGER_NAME)
    for h in list(logger.handlers):
        if isinstance(h, logging.NullHandler):
            logger.removeHandler(h)

    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter(fmt or _DEFAULT_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(_resolve_level(level))
    logger.propagate = False
    _configured = True


def get_logger(name: str) -> logging.Logger:
    pkg_logger = logging.getLogger(_PKG_LOGGER_NAME)
    if not _configured and not pkg_logger.handlers:
        pkg_logger.addHandler(logging.NullHandler())
    return logging.getLogger(name)
