# services/logger_config.py
import logging
from logging.handlers import RotatingFileHandler
import os
from typing import Optional

from adaptive_rag.config import settings

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'

# Libraries that log every HTTP request or model shard at INFO
NOISY_LOGGERS = ("sentence_transformers", "urllib3", "httpx", "filelock")


def _file_handler(formatter: logging.Formatter) -> Optional[logging.Handler]:
    log_dir = os.path.dirname(settings.LOG_FILE_PATH)
    try:
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handler = RotatingFileHandler(
            settings.LOG_FILE_PATH,
            maxBytes=settings.LOG_MAX_BYTES,
            backupCount=settings.LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
    except OSError as e:
        print(f"Error setting up file logger at {settings.LOG_FILE_PATH}: {e}")
        return None
    handler.setFormatter(formatter)
    handler.setLevel(settings.LOG_LEVEL)
    return handler


def setup_logging() -> logging.Logger:
    """
    Configure the engine logger once per process: a rotating file at
    LOG_LEVEL and the console at CONSOLE_LOG_LEVEL. Calling it again
    replaces the handlers instead of duplicating them.
    """
    logger = logging.getLogger(settings.LOGGER_NAME)
    logger.handlers.clear()
    logger.setLevel(logging.DEBUG)

    formatter = logging.Formatter(LOG_FORMAT)

    file_handler = _file_handler(formatter)
    if file_handler is not None:
        logger.addHandler(file_handler)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    console.setLevel(settings.CONSOLE_LOG_LEVEL)
    logger.addHandler(console)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.info(
        f"[LOG] Logging to {settings.LOG_FILE_PATH if file_handler else 'console only'} "
        f"(file={settings.LOG_LEVEL}, console={settings.CONSOLE_LOG_LEVEL})"
    )
    return logger
