"""Logging configuration"""
import logging
import re
import sys

from app.config.settings import get_settings
from app.core.middleware import correlation_id_var

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(correlation_id)s] %(message)s"

_SECRET_PATTERNS = [
    (re.compile(r"(Bearer\s+)[^\s\"',]+"), r"\1***"),
    (
        re.compile(r"(\b(?:access_token|refresh_token|client_secret|code)[\"']?\s*[=:]\s*[\"']?)[^&\s\"',}]+"),
        r"\1***",
    ),
]


def redact_secrets(text: str) -> str:
    """Mask bearer tokens, OAuth codes and client secrets"""
    for pattern, replacement in _SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


class CorrelationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get()
        return True


class SecretRedactingFilter(logging.Filter):
    """Vendor error bodies and URLs end up in log messages; strip credentials from them"""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact_secrets(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def setup_logging(verbose=True):
    """Configure application logging"""
    settings = get_settings()

    if verbose:
        level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    else:
        level = logging.WARNING

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(CorrelationIdFilter())
    handler.addFilter(SecretRedactingFilter())

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=[handler])

    # urllib3 logs every vendor request URL at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    if not verbose:
        for name in ("sqlalchemy", "alembic", "uvicorn", "uvicorn.error", "uvicorn.access"):
            logger = logging.getLogger(name)
            logger.setLevel(logging.ERROR)
            logger.propagate = False
