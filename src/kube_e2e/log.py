"""Logging setup for kube-e2e.

All logging goes to stderr so scenario reports on stdout stay clean.
Engine modules use the standard library logger; the scenario runner uses
structlog so every line carries the scenario name.
"""

import logging
import sys

import structlog

LOG_FORMAT = "%(levelname)-8s [%(name)s] %(message)s"

# Loggers from libraries that are too chatty at DEBUG
QUIET_LOGGERS = ["asyncio"]


def configure_logging(level: str = "INFO") -> None:
    """Configure stdlib logging and structlog to write to stderr."""
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(stderr_handler)
    root_logger.setLevel(level.upper())

    for logger_name in QUIET_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
