"""Logging helpers shared across the core.

Every module logs through ``logging.getLogger(__name__)``, so records are
named after the package that emits them (``services.lifecycle_service``,
``data.storage.memory`` ...).  :func:`configure_logging` attaches one console
handler to each of those top-level packages; embedding applications that
already configure logging can skip it entirely.
"""

from __future__ import annotations

import logging
from typing import IO, TYPE_CHECKING, Optional, Tuple

if TYPE_CHECKING:  # pragma: no cover - solo para anotaciones
    from core.config import CoreConfig

__all__ = [
    "PACKAGE_LOGGERS",
    "configure_logging",
    "get_logger",
    "log_debug",
    "log_error",
    "log_info",
    "log_warn",
    "set_level",
]


_LOGGER_NAME = "practicas"
_DEFAULT_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"
_HANDLER_NAME = "practicas-console"

# Paquetes cuyos loggers de módulo se enrutan al mismo handler.
PACKAGE_LOGGERS: Tuple[str, ...] = (
    _LOGGER_NAME,
    "core",
    "data",
    "grading",
    "metrics",
    "reporting",
    "services",
    "utils",
)


def _has_console_handler(logger: logging.Logger) -> bool:
    return any(handler.get_name() == _HANDLER_NAME for handler in logger.handlers)


def _attach(logger: logging.Logger, level: str | int, stream: Optional[IO[str]]) -> None:
    if not _has_console_handler(logger):
        handler = logging.StreamHandler(stream)
        handler.set_name(_HANDLER_NAME)
        handler.setFormatter(logging.Formatter(_DEFAULT_FORMAT))
        logger.addHandler(handler)
        logger.propagate = False
    logger.setLevel(level)


def configure_logging(
    level: str | int | None = None,
    *,
    stream: Optional[IO[str]] = None,
    config: Optional["CoreConfig"] = None,
) -> None:
    """Route every package logger to a console handler at ``level``.

    Defaults to ``config.log_level`` (``PRACTICAS_LOG_LEVEL`` unless
    overridden).  Calling it again only updates the level.
    """

    if level is None:
        from core.config import CoreConfig

        level = (config or CoreConfig()).log_level
    for name in PACKAGE_LOGGERS:
        _attach(logging.getLogger(name), level, stream)


def get_logger(name: str | None = None) -> logging.Logger:
    """Return the shared ``practicas`` logger or one of its children."""

    root = logging.getLogger(_LOGGER_NAME)
    if not root.handlers:
        from core.config import LOG_LEVEL

        _attach(root, LOG_LEVEL, None)
    if not name:
        return root
    return root.getChild(name)


def set_level(level: int | str) -> None:
    """Update the level of the shared logger and of every package logger."""

    for name in PACKAGE_LOGGERS:
        logging.getLogger(name).setLevel(level)


def _log(level: int, message: str) -> None:
    get_logger().log(level, message)


def log_debug(message: str) -> None:
    _log(logging.DEBUG, message)


def log_info(message: str) -> None:
    _log(logging.INFO, message)


def log_warn(message: str) -> None:
    _log(logging.WARNING, message)


def log_error(message: str) -> None:
    _log(logging.ERROR, message)
