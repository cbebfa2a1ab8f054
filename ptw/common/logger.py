"""Logging setup for the permit-to-work service.

Every module logs through ``logging.getLogger(__name__)``; this module
configures the ``ptw`` package logger they all propagate to, from the
``log_level``, ``log_dir`` and ``file_logging`` settings.
"""

import logging
import logging.handlers
import os

from ptw.core.config import Settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

LOG_FILE_NAME = "ptw.log"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

# Marks handlers installed here, so reconfiguring replaces them
_HANDLER_TAG = "_ptw_handler"


def _tagged(handler: logging.Handler) -> logging.Handler:
    setattr(handler, _HANDLER_TAG, True)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    return handler


def setup_logger(settings: Settings, name: str = "ptw") -> logging.Logger:
    """Configure the package logger from settings.

    Console output always goes to stderr. With ``file_logging`` enabled a
    rotating ``ptw.log`` is written under ``log_dir``. Calling this again
    replaces the handlers it installed earlier instead of stacking them.

    Raises:
        ValueError: If ``log_level`` is not a standard level name
    """
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        raise ValueError(
            f"Invalid log level: {settings.log_level}. "
            f"Must be one of: DEBUG, INFO, WARNING, ERROR, CRITICAL"
        )

    logger = logging.getLogger(name)
    logger.setLevel(level)
    for handler in [h for h in logger.handlers if getattr(h, _HANDLER_TAG, False)]:
        logger.removeHandler(handler)
        handler.close()

    logger.addHandler(_tagged(logging.StreamHandler()))
    if settings.file_logging:
        os.makedirs(settings.log_dir, exist_ok=True)
        logger.addHandler(_tagged(logging.handlers.RotatingFileHandler(
            os.path.join(settings.log_dir, LOG_FILE_NAME),
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=LOG_FILE_BACKUPS,
        )))

    # SQL statement echo only in debug mode
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if settings.debug else logging.WARNING)
    return logger
