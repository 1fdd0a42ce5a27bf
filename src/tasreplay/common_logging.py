"""
Logging setup shared by the command-line tool and host applications.

Library modules only call ``structlog.get_logger(__name__)``; nothing is
configured on import. A host (or the ``tasreplay`` command) calls
configure_logging() once to pick the level and the renderer.
"""

import logging
import sys

import structlog

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def resolve_level(level: str | int) -> int:
    """
    Translate a level name into a stdlib logging level.

    Raises:
        ValueError: If the name is not a known level
    """
    if isinstance(level, int):
        return level
    try:
        return _LEVELS[level.upper()]
    except KeyError:
        raise ValueError(f"Unknown log level: {level}. Available: {', '.join(_LEVELS)}")


def configure_logging(level: str | int = "INFO", json_output: bool = False) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        level: Minimum level to emit (name or numeric level)
        json_output: Render events as JSON lines instead of the console format
    """
    numeric_level = resolve_level(level)

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=numeric_level, force=True)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if json_output:
        # ConsoleRenderer formats exceptions itself
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
