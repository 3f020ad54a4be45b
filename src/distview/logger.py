"""Console logging helper shared by the binning and redraw modules."""

from __future__ import annotations

import logging
from typing import Optional

_LOGGER_NAME = "distview"


class _EpochFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "epoch"):
            record.epoch = "-"
        return True


def get_logger(name: str) -> logging.Logger:
    """Return a logger configured for console output.

    Parameters
    ----------
    name : str
        Module name, typically ``__name__``.
    """
    base = logging.getLogger(_LOGGER_NAME)
    if not base.handlers:
        base.setLevel(logging.INFO)
        handler = logging.StreamHandler()
        handler.setLevel(logging.INFO)
        formatter = logging.Formatter(
            "[%(asctime)s] [%(levelname)s] %(module)s epoch=%(epoch)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)
        handler.addFilter(_EpochFilter())
        base.addHandler(handler)
        base.propagate = False
    if name.startswith(_LOGGER_NAME + "."):
        name = name[len(_LOGGER_NAME) + 1 :]
    logger = logging.getLogger(f"{_LOGGER_NAME}.{name}")
    logger.setLevel(base.level)
    return logger


def set_level(level: int) -> None:
    """Update log level for the package logger and all its handlers."""
    base = logging.getLogger(_LOGGER_NAME)
    base.setLevel(level)
    for handler in base.handlers:
        handler.setLevel(level)
    for name, logger in logging.root.manager.loggerDict.items():
        if name.startswith(_LOGGER_NAME + ".") and isinstance(logger, logging.Logger):
            logger.setLevel(level)


def attach_handler(handler: Optional[logging.Handler]) -> None:
    """Attach an extra handler (e.g. a diagnostics view in the host application)."""
    if handler is None:
        return
    handler.addFilter(_EpochFilter())
    base = logging.getLogger(_LOGGER_NAME)
    if handler not in base.handlers:
        base.addHandler(handler)
