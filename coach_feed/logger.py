import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .config import LogConfig, Settings

# Third-party loggers that flood the output below WARNING
NOISY_LOGGERS = ("nio", "botocore", "aiobotocore", "sqlalchemy.engine")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _file_handler(config: LogConfig) -> RotatingFileHandler:
    log_path = Path(config.file_path)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    return RotatingFileHandler(
        log_path,
        maxBytes=config.max_size_mb * 1024 * 1024,
        backupCount=config.backup_count,
    )


def setup_logging(settings: Settings) -> None:
    """Configure the root logger with a console and a rotating file handler"""
    config = settings.logging
    level = getattr(logging, config.level.upper())
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    file_handler = _file_handler(config)
    file_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    library_level = level if level <= logging.DEBUG else max(level, logging.WARNING)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the specified name"""
    return logging.getLogger(name)
