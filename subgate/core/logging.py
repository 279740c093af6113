from __future__ import annotations

import logging

from subgate.core.config import get_settings


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str | None = None) -> None:
    # Configure the root logger once; module loggers inherit level and handler.
    resolved = (level or get_settings().log_level).upper()
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=resolved, format=_LOG_FORMAT)
    root.setLevel(resolved)
    # Keep driver chatter out of application logs unless debugging.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
