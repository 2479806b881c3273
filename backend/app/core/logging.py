"""Logging configuration for the application"""
import logging
from typing import Iterable, Optional

from app.core.config import settings

REDACTED = "***"


class SecretRedactionFilter(logging.Filter):
    """Masks gateway credentials if one ever ends up in a log message"""

    def __init__(self, secrets: Iterable[Optional[str]]):
        super().__init__()
        self._secrets = [s for s in secrets if s]

    def filter(self, record: logging.LogRecord) -> bool:
        if not self._secrets:
            return True
        message = record.getMessage()
        redacted = message
        for secret in self._secrets:
            redacted = redacted.replace(secret, REDACTED)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def build_redaction_filter() -> SecretRedactionFilter:
    """Redaction filter for the configured gateway secrets"""
    return SecretRedactionFilter([settings.RAZORPAY_KEY_SECRET, settings.RAZORPAY_WEBHOOK_SECRET])


def setup_logging():
    """Configure logging for the application"""
    LOG_LEVEL = settings.LOG_LEVEL.upper()
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        force=True
    )

    redaction = build_redaction_filter()
    for handler in logging.getLogger().handlers:
        handler.addFilter(redaction)

    # Silence noisy third-party libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# Export commonly used loggers
payment_logger = logging.getLogger("payments")
webhook_logger = logging.getLogger("webhooks")
