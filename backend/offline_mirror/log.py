"""
Logging setup built on structlog
"""
import logging
import sys

import structlog

LOGGER_NAME = "offline_mirror"


def configure_logging(
        level: str = "INFO",
        fmt: str = "console"
) -> None:
    """
    Configure structlog on top of the standard library logger
    :param level: log level name, e.g. INFO or DEBUG
    :param fmt: "console" for human readable output, "json" for one object per line
    :return:
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=level.upper(),
        force=True
    )

    if fmt == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
    )


def get_logger(name: str = LOGGER_NAME) -> structlog.stdlib.BoundLogger:
    return structlog.stdlib.get_logger(name)
