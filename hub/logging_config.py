import logging
import os
import sys
from typing import Optional

from loguru import logger


class InterceptHandler(logging.Handler):
    """Forward stdlib logging records (uvicorn, sqlalchemy, our module loggers) into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).bind(logger_name=record.name).log(
            level, record.getMessage()
        )


def configure_logging(level: Optional[str] = None) -> None:
    """
    Configure loguru to emit structured JSON logs to stdout.

    Fields include:
      - time, level, message
      - module, function, line
      - any `extra={...}` fields bound on the logger (logger_name for stdlib records)
    """
    logger.remove()

    log_level = (level or os.getenv("FO_LOG_LEVEL", "INFO")).upper()

    logger.add(
        sys.stdout,
        level=log_level,
        serialize=True,  # JSON output
        backtrace=False,
        diagnose=False,
    )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).handlers = [InterceptHandler()]
        logging.getLogger(name).propagate = False
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
