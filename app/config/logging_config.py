"""
Logging setup for the call bridge.

All modules log through the single application logger named ``LOGGER_NAME``.
``configure_logging`` attaches a stdout handler and a size-rotated file handler
to it, masks API credentials in every record, and turns down the chatty
third-party loggers used for the engine, LiveKit and HTTP traffic.
"""

import logging
import re
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from app.config.constants import LOGGER_NAME

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

LOG_DIR = Path("logs")
LOG_FILE = LOG_DIR / "call_bridge.log"
MAX_LOG_SIZE = 10 * 1024 * 1024  # 10 MB
BACKUP_COUNT = 5

# Libraries that log every frame or request at INFO/DEBUG
NOISY_LOGGERS = ("websockets", "httpx", "httpcore", "openai", "livekit", "twilio.http_client")

SECRET_PATTERNS = (
    re.compile(r"sk-[A-Za-z0-9_\-]{8,}"),
    re.compile(r"(Bearer\s+)[A-Za-z0-9_\-\.]+"),
)
REDACTED = "***"


class RedactSecretsFilter(logging.Filter):
    """Mask API keys and bearer tokens in formatted log messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = message
        for pattern in SECRET_PATTERNS:
            redacted = pattern.sub(lambda m: (m.group(1) if m.groups() else "") + REDACTED, redacted)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def configure_logging(level: str = "INFO") -> logging.Logger:
    """
    (Re)configure the application logger.

    Handlers from an earlier call are closed and replaced, so calling this
    more than once (e.g. one app per test) never duplicates output.

    Args:
        level: Log level name such as "DEBUG" or "INFO"; unknown names mean INFO

    Returns:
        logging.Logger: The application logger
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    logger.propagate = False

    for handler in logger.handlers[:]:
        handler.close()
        logger.removeHandler(handler)
    for log_filter in logger.filters[:]:
        logger.removeFilter(log_filter)

    formatter = logging.Formatter(LOG_FORMAT)
    logger.addFilter(RedactSecretsFilter())

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(formatter)
    logger.addHandler(stdout_handler)

    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(LOG_FILE, maxBytes=MAX_LOG_SIZE, backupCount=BACKUP_COUNT)
    except OSError as e:
        logger.warning(f"File logging disabled, cannot write to {LOG_FILE}: {e}")
    else:
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.debug(f"Logging configured at {logging.getLevelName(logger.level)}")
    return logger
