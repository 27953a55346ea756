import logging
from logging.handlers import RotatingFileHandler

from proxyguard.core.settings import get_settings

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"
MAX_BYTES = 5 * 1024 * 1024
BACKUP_COUNT = 3


def build_logger(name: str = "challenge") -> logging.Logger:
    settings = get_settings()
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, settings.log_level, logging.INFO))

    # Prevent duplicate handlers on re-import
    if not any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
        # Opened on first record so importing the app never touches the disk
        handler = RotatingFileHandler(
            settings.log_file, maxBytes=MAX_BYTES, backupCount=BACKUP_COUNT, delay=True
        )
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    return logger


challenge_logger = build_logger()
