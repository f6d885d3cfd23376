from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from typing import Optional

from planwizard.config import ensure_directories, get_logging_config

_LOGGER: Optional[logging.Logger] = None
_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def get_logger() -> logging.Logger:
    """Configure the ``planwizard`` logger on first use and return it."""

    global _LOGGER
    if _LOGGER is None:
        settings = get_logging_config()
        logger = logging.getLogger("planwizard")
        if not logger.handlers:
            formatter = logging.Formatter(_FORMAT)
            stream = logging.StreamHandler()
            stream.setFormatter(formatter)
            logger.addHandler(stream)
            if settings.to_file:
                log_path = ensure_directories().logs_dir / "planwizard.log"
                file_handler = RotatingFileHandler(log_path, maxBytes=1_000_000, backupCount=3, encoding="utf-8")
                file_handler.setFormatter(formatter)
                logger.addHandler(file_handler)
        logger.setLevel(settings.level)
        _LOGGER = logger
    return _LOGGER
