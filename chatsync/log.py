# -*- coding: utf-8 -*-
"""
Logging setup for applications embedding the sync engine.
"""

import logging
from logging.handlers import RotatingFileHandler

from chatsync.config import LOG_FILE, LOG_LEVEL

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def setup_logging(log_file: str | None = None, level: str | None = None) -> logging.Logger:
    """Configure the root logger. Rotates the log file at 10MB, keeps 5 backups."""
    log_file = LOG_FILE if log_file is None else log_file
    level_name = (level or LOG_LEVEL or 'INFO').upper()
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        try:
            file_handler = RotatingFileHandler(
                log_file, maxBytes=10 * 1024 * 1024, backupCount=5, encoding='utf-8'
            )
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
            handlers.insert(0, file_handler)
        except (PermissionError, OSError):
            # console only
            pass

    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
    return logging.getLogger('chatsync')
