import logging
import sys
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Optional

from tcbot.config import Config

PACKAGE_LOGGER = 'tcbot'
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def configure_logging(log_dir: Optional[str] = None, debug: Optional[bool] = None,
                      retention_days: Optional[int] = None, name: str = PACKAGE_LOGGER) -> logging.Logger:
    """
    Attach the console and file handlers to the package logger.

    Every module logger lives under the package logger, so the handlers are added once here
    rather than per module. The log file rolls over at midnight and old files are removed
    after ``retention_days``. Arguments left as None are read from Config.
    """
    package_logger = logging.getLogger(name)
    if package_logger.handlers:
        return package_logger

    debug = Config.DEBUG if debug is None else debug
    log_level = logging.DEBUG if debug else logging.INFO
    package_logger.setLevel(logging.DEBUG)
    # Root handlers added by discord.py would repeat every line
    package_logger.propagate = False

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    package_logger.addHandler(console_handler)

    directory = Path(log_dir or Config.LOG_DIRECTORY)
    directory.mkdir(parents=True, exist_ok=True)
    file_handler = TimedRotatingFileHandler(
        directory / 'team_competition.log',
        when='midnight',
        backupCount=Config.LOG_RETENTION_DAYS if retention_days is None else retention_days,
        encoding='utf-8',
        utc=True,
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    package_logger.addHandler(file_handler)

    return package_logger


def setup_logger(name: str) -> logging.Logger:
    """Logger for a module, writing through the package handlers."""
    configure_logging()
    if name != PACKAGE_LOGGER and not name.startswith(f'{PACKAGE_LOGGER}.'):
        name = f'{PACKAGE_LOGGER}.{name}'
    return logging.getLogger(name)


def format_with_commas(value: int) -> str:
    """Format a points/units count for log output, e.g. 1234567 -> '1,234,567'."""
    return f"{value:,}"
