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
    level: str = "INFO",
    *,
    force: bool = False,
) -> structlog.BoundLogger:
    """Set up structured JSON logging for the repo_fusion package.

    The first call wins. The CLI passes ``force=True`` once the effective
    settings are known, so the log file and level from the configuration apply.

    Args:
        filename: Optional path to a log file. If empty or None, logs go to stderr.
        level: Standard logging level name.
        force: Reconfigure even if logging was already set up.

    Returns:
        A structlog logger bound to the repo_fusion namespace.
    """
    global _LOGGING_CONFIGURED  # noqa: PLW0603
    if force or not _LOGGING_CONFIGURED:
        numeric_level = logging.getLevelNamesMapping().get(level.upper(), logging.INFO)
        handlers: list[logging.Handler] = []
        if filename:
            handlers.append(logging.FileHandler(str(filename), encoding="utf-8"))
        else:
            handlers.append(logging.StreamHandler(sys.stderr))

        logging.basicConfig(
            level=numeric_level,
            handlers=handlers,
            format="%(message)s",
            force=force,
        )
        structlog.configure(
            processors=[
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.add_log_level,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(sort_keys=True),
            ],
            wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=False,
        )
        _LOGGING_CONFIGURED = True

    return structlog.get_logger("repo_fusion")


logger = setup_logging()
