"""
backupx - point-in-time backups of databases and filesystem trees.

Backs up SQLite, PostgreSQL and MySQL databases as SQL dumps and files or
directories as streaming archives into one output directory, then prunes
old artifacts under a retention policy.
"""

import os
import logging
from logging.handlers import RotatingFileHandler
from typing import Optional

__version__ = "0.2.0"


def configure_logging(debug: bool = False, log_dir: Optional[str] = None, level: Optional[str] = None):
    """
    Configure the 'backupx' logger.

    Verbosity is applied by each BackupLog sink (quiet sinks log at DEBUG),
    so the logger itself only needs to pass INFO, or DEBUG when debugging.

    Args:
        debug: Also emit DEBUG records
        log_dir: Directory for a rotating log file (optional)
        level: Explicit level name overriding debug (e.g. 'WARNING')
    """
    if level:
        log_level = logging.getLevelName(level.upper())
        if not isinstance(log_level, int):
            log_level = logging.INFO
    else:
        log_level = logging.DEBUG if debug else logging.INFO

    logger = logging.getLogger('backupx')
    logger.setLevel(log_level)
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    ))
    logger.addHandler(console_handler)

    # File handler
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, 'backupx.log'),
            maxBytes=10485760,  # 10MB
            backupCount=10
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
        ))
        logger.addHandler(file_handler)

    logger.debug(f"Logging configured (level: {logging.getLevelName(log_level)})")
    return logger


from .models import (  # noqa: E402
    BackupConfig,
    BackupResult,
    BackupSummary,
    DatabaseTarget,
    FileTarget,
    RetentionPolicy,
    TargetKind
)
from .backup.executor import BackupManager, create_backup  # noqa: E402

__all__ = [
    'configure_logging',
    'BackupConfig',
    'BackupResult',
    'BackupSummary',
    'DatabaseTarget',
    'FileTarget',
    'RetentionPolicy',
    'TargetKind',
    'BackupManager',
    'create_backup'
]
