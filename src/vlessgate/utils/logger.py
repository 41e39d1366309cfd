"""
Logging setup for VlessGate.

All modules log through loguru. Records emitted by the standard ``logging``
module (uvicorn, fastapi, asyncio) are intercepted and re-emitted through
loguru so the whole process shares one sink and one format.
"""

import logging
import sys
import traceback

from loguru import logger as _logger

from vlessgate.models.enums import LogLevel

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan> - <level>{message}</level>"
)

_LOGURU_LEVELS = {
    LogLevel.FULL: "TRACE",
    LogLevel.DEBUG: "DEBUG",
    LogLevel.INFO: "INFO",
    LogLevel.WARNING: "WARNING",
}

_INTERCEPTED_LOGGERS = (
    "uvicorn",
    "uvicorn.error",
    "uvicorn.access",
    "fastapi",
    "asyncio",
)

_logger.configure(extra={"name": "vlessgate"})


class InterceptHandler(logging.Handler):
    """Forward standard logging records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = _logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk back to the frame that issued the logging call
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        _logger.bind(name=record.name).opt(
            depth=depth, exception=record.exc_info
        ).log(level, record.getMessage())


def configure_logging(level: LogLevel = LogLevel.INFO) -> None:
    """
    Configure the loguru sink and intercept standard logging.

    Must be called before uvicorn starts so its loggers pick up the
    intercept handler.

    Args:
        level: Verbosity level for the process.
    """
    _logger.remove()
    _logger.add(
        sys.stderr,
        level=_LOGURU_LEVELS.get(level, "INFO"),
        format=LOG_FORMAT,
        backtrace=level == LogLevel.FULL,
        diagnose=level == LogLevel.FULL,
    )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in _INTERCEPTED_LOGGERS:
        std_logger = logging.getLogger(name)
        std_logger.handlers = [InterceptHandler()]
        std_logger.propagate = False


def get_logger(name: str):
    """Get a loguru logger bound to a module name."""
    return _logger.bind(name=name)


def format_traceback(exc: BaseException) -> str:
    """Format an exception with its traceback as a single string."""
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
