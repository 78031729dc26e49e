"""ytdigest logging configuration.

Modules log through ``structlog.get_logger(__name__)`` with printf-style
arguments or key/value context; this wires structlog onto stdlib logging so
both render through one handler.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional

import structlog

DEFAULT_LOG_LEVEL = "INFO"


def setup_logging(level: Optional[str] = None) -> None:
    """Configure ytdigest logging.

    Args:
        level: Optional override for `YTDIGEST_LOG_LEVEL`.
    """
    level_name = (level or os.getenv("YTDIGEST_LOG_LEVEL", DEFAULT_LOG_LEVEL)).upper()

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=level_name,
        force=True,
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    # Third-party HTTP chatter from the Telegram client
    logging.getLogger("httpx").setLevel(logging.WARNING)
