"""
Logging Setup

Installs a single console handler for the whole process. Modules log through
`logging.getLogger(__name__)`.
"""

import logging
import sys

from alumni.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s - %(message)s"

# Third-party loggers that are too chatty at INFO
_QUIET_LOGGERS = ("apscheduler.executors", "httpx", "httpcore")


def configure_logging(level: str | None = None) -> None:
    """Configure root logging once, at application startup."""
    root = logging.getLogger()
    root.setLevel((level or settings.log_level).upper())

    if not any(getattr(h, "_alumni_handler", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._alumni_handler = True  # type: ignore[attr-defined]
        root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
