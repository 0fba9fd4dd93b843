import logging
import sys
from pathlib import Path
from typing import Optional

from loguru import logger
from stmtcache.core.settings import settings


class InterceptHandler(logging.Handler):
    """Route stdlib logging (SQLAlchemy, sqlite3 adapters) into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1
        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def configure_logging(level: Optional[str] = None, log_file: Optional[Path] = None) -> None:
    level = level or settings.log_level.value
    log_file = log_file or settings.logging.file

    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level> | {extra}",
    )
    if log_file:
        logger.add(
            log_file,
            rotation="10 MB",
            retention="1 week",
            level=level,
            compression="zip",
            enqueue=True,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
