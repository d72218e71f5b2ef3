#!/usr/bin/env python3
"""
Logging setup for applications embedding the login core
"""

import logging
import logging.handlers
import os
from typing import Any, Dict, Union

from .auth_config import LoggingConfig


def setup_logging(logging_config: Union[LoggingConfig, Dict[str, Any]]) -> logging.Logger:
    """Setup logging configuration."""
    if isinstance(logging_config, LoggingConfig):
        logging_config = logging_config.to_dict()

    level = getattr(logging, logging_config.get('level', 'INFO').upper(), logging.INFO)

    logger = logging.getLogger()
    logger.setLevel(level)
    logger.handlers.clear()

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if logging_config.get('log_to_file', False):
        logs_dir = logging_config.get('logs_dir', 'logs')
        os.makedirs(logs_dir, exist_ok=True)
        log_filename = os.path.join(logs_dir, logging_config.get('log_filename', 'msauth.log'))

        if logging_config.get('rotate_logs', True):
            file_handler = logging.handlers.RotatingFileHandler(
                log_filename,
                maxBytes=10*1024*1024,  # 10MB
                backupCount=5,
                encoding='utf-8'
            )
        else:
            file_handler = logging.FileHandler(log_filename, encoding='utf-8')

        file_handler.setLevel(logging.DEBUG)  # File gets all logs
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    # Per-request noise from urllib3
    logging.getLogger('urllib3').setLevel(logging.WARNING)

    return logger
