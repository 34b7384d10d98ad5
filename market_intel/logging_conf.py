"""Logging setup shared by the CLI and the API."""
import logging
from typing import Optional

from market_intel.config import config
from market_intel.redact import redact_string

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"


class RedactingFilter(logging.Filter):
    """Scrub tokens and secrets from every record before it is emitted."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact_string(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


def setup_logging(level: Optional[str] = None) -> None:
    """Configure the root logger once."""
    level_name = (level or config.LOG_LEVEL).upper()
    root = logging.getLogger()
    if not any(isinstance(f, RedactingFilter) for h in root.handlers for f in h.filters):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler.addFilter(RedactingFilter())
        root.addHandler(handler)
    root.setLevel(getattr(logging, level_name, logging.INFO))

    # httpx logs every request URL at INFO, including query strings
    logging.getLogger("httpx").setLevel(logging.WARNING)
