from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from pathlib import Path

_LOGGING_CONFIGURED = False


def setup_logging(
    filename: str | Path | None = None,
    level: str | int | None = None,
) -> structlog.BoundLogger:
    """Set up structured logging for the distributor package.

    The first call configures stdlib logging and structlog. Later calls only
    reconfigure the stdlib side, and only when a log file or level is given,
    so the CLI can redirect output after the module-level logger exists.

    Args:
        filename: Optional path to a log file. If None, logs are written to stderr.
        level: Optional log level name or number. Defaults to INFO.

    Returns:
        A structlog logger instance configured for the distributor package.
    """
    global _LOGGING_CONFIGURED  # noqa: PLW0603
    if not _LOGGING_CONFIGURED or filename or level:
        handlers: list[logging.Handler] = []
        if filename:
            handlers.append(logging.FileHandler(str(filename), encoding="utf-8"))
        else:
            handlers.append(logging.StreamHandler(sys.stderr))

        if isinstance(level, str):
            level = logging.getLevelName(level.upper())
        logging.basicConfig(
            level=level if isinstance(level, int) else logging.INFO,
            handlers=handlers,
            format="%(message)s",
            force=True,
        )

    if not _LOGGING_CONFIGURED:
        structlog.configure(
            processors=[
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.add_log_level,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ],
            # level filtering is left to the stdlib handlers configured above
            wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG),
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )
        _LOGGING_CONFIGURED = True

    return structlog.get_logger("distributor")


logger = setup_logging()
