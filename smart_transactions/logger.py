import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

from .config import LoggingSettings

NOISY_LOGGERS = ("httpx", "httpcore", "aiohttp", "asyncio")


def setup_logging(settings: Optional[LoggingSettings] = None) -> logging.Logger:
    """Configure the root logger for an application using the pipeline."""
    settings = settings or LoggingSettings()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.level.value))
    root_logger.handlers.clear()

    formatter = logging.Formatter(settings.format, datefmt=settings.date_format)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if settings.file_enabled:
        settings.file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            settings.file_path,
            maxBytes=settings.file_max_bytes,
            backupCount=settings.file_backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        file_handler.setLevel(logging.DEBUG)
        root_logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logging.getLogger("smart_transactions")


__all__ = ["setup_logging"]
