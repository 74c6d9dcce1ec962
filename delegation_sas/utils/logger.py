import logging
import os
import re
from contextvars import ContextVar
from logging.handlers import RotatingFileHandler
from typing import List, Optional

# Trace id of the request being served, the default marks messages logged outside of a request
log_context: ContextVar[str] = ContextVar("trace_id", default="-")

LOG_FILE = os.getenv("LOG_FILE")
LOG_FORMAT = "%(asctime)s [%(trace_id)s] %(levelname)s %(name)s: %(message)s"
LOG_LEVEL = logging.getLevelName(os.getenv("LOG_LEVEL", "INFO").upper())
LOG_FILE_MAX_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUP_COUNT = 3

# Bearer tokens, SAS signatures and client secrets must never reach a log sink
SECRET_PATTERNS = (
    (re.compile(r"(Bearer\s+)[^\s\"']+", re.IGNORECASE), r"\1***"),
    (re.compile(r"([?&]sig=)[^&\s\"']+"), r"\1***"),
    (re.compile(r"(client_secret=)[^&\s\"']+"), r"\1***"),
)


class TraceIDContextFilter(logging.Filter):
    def filter(self, record):
        record.trace_id = log_context.get()
        return True


class SecretRedactionFilter(logging.Filter):
    """Masks credentials in the formatted message before any handler writes it."""

    def filter(self, record):
        message = record.getMessage()
        redacted = redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def redact(message: str) -> str:
    for pattern, replacement in SECRET_PATTERNS:
        message = pattern.sub(replacement, message)
    return message


def build_handlers(log_file: Optional[str]) -> List[logging.Handler]:
    """Console output always, plus a rotating file when a log file is configured."""
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(RotatingFileHandler(log_file, maxBytes=LOG_FILE_MAX_BYTES,
                                            backupCount=LOG_FILE_BACKUP_COUNT))

    formatter = logging.Formatter(LOG_FORMAT)
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(TraceIDContextFilter())
        handler.addFilter(SecretRedactionFilter())
    return handlers


def setup_logger(name: str, log_file: Optional[str] = LOG_FILE, level: int = LOG_LEVEL) -> logging.Logger:
    """
    Sets up the named service logger.

    Args:
        name (str): The name of the logger.
        log_file (str, optional): File to rotate logs into. Console only when not given.
        level (int): The logging level (e.g., logging.INFO, logging.DEBUG, logging.ERROR).

    Returns:
        logging.Logger: Configured logger instance.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = False

    # Re-running setup replaces handlers instead of duplicating them
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    for handler in build_handlers(log_file):
        logger.addHandler(handler)

    return logger


logger = setup_logger("DelegationSas")
