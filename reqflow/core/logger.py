"""Logging setup for reqflow.

Modules obtain their loggers with ``logging.getLogger(__name__)`` and never
attach handlers themselves. ``configure_from_settings`` runs once, in the
API lifespan, and attaches console and rotating-file handlers to the
``reqflow`` package logger so every engine module inherits them.
"""

import logging
import logging.handlers
import os
from typing import List, Optional

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"
ISO_8601 = "%Y-%m-%dT%H:%M:%S"

# Library loggers that flood INFO with per-statement or per-request lines
CHATTY_LOGGERS = ("sqlalchemy.engine", "httpx", "httpcore")


def parse_level(level: str) -> int:
    """Map a level name to its ``logging`` constant; raises ValueError on unknown names."""
    name = str(level).strip().upper()
    if name not in LOG_LEVELS:
        raise ValueError(f"Invalid log level: {level}. Must be one of: {', '.join(LOG_LEVELS)}")
    return getattr(logging, name)


def _handlers(
    log_file: Optional[str],
    *,
    console: bool,
    max_bytes: int,
    backup_count: int,
) -> List[logging.Handler]:
    handlers: List[logging.Handler] = []
    if log_file:
        os.makedirs(os.path.dirname(log_file), exist_ok=True)
        handlers.append(logging.handlers.RotatingFileHandler(
            log_file, maxBytes=max_bytes, backupCount=backup_count
        ))
    if console:
        handlers.append(logging.StreamHandler())
    return handlers


def setup_logger(
    name: str,
    log_dir: str = "/var/log/reqflow",
    level: str = "INFO",
    log_format: Optional[str] = None,
    date_format: Optional[str] = None,
    file_logging: bool = True,
    console_logging: bool = True,
    max_bytes: int = 10485760,  # 10MB
    backup_count: int = 5,
) -> logging.Logger:
    """Attach handlers to logger ``name`` and set its level.

    Calling it again only updates the level; handlers are attached once.

    Args:
        name: Logger name (usually the package name, so child loggers inherit)
        log_dir: Directory for ``<name>.log``
        level: One of ``LOG_LEVELS``, case-insensitive
        log_format: Custom format string
        date_format: Custom date format (ISO 8601 by default)
        file_logging: Write to a rotating file
        console_logging: Write to stderr
        max_bytes: File size that triggers rotation
        backup_count: Rotated files kept

    Returns:
        The configured logger
    """
    logger = logging.getLogger(name)
    logger.setLevel(parse_level(level))
    if logger.handlers:
        return logger

    formatter = logging.Formatter(log_format or LOG_FORMAT, datefmt=date_format or ISO_8601)
    log_file = os.path.join(log_dir, f"{name}.log") if file_logging else None
    for handler in _handlers(log_file, console=console_logging, max_bytes=max_bytes, backup_count=backup_count):
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger


def configure_from_settings(settings) -> logging.Logger:
    """Configure the ``reqflow`` logger from settings and quiet chatty libraries."""
    logger = setup_logger(
        "reqflow",
        log_dir=settings.log_dir,
        level=settings.log_level,
        file_logging=settings.log_to_file,
        max_bytes=settings.log_max_bytes,
        backup_count=settings.log_backup_count,
    )
    if logger.level > logging.DEBUG:
        for name in CHATTY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
    return logger
