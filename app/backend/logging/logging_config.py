import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from ..config.config import settings


def setup_logging(log_dir: Path = Path("logs")):
    """
    Installs the application-wide logging configuration.

    Records go both to stdout and to a size-rotated file so the kiosk host
    keeps a short history of scans and cache rebuilds after restarts.
    """
    log_dir.mkdir(exist_ok=True)
    log_format = "%(asctime)s - [%(name)s] - %(levelname)s - %(message)s"

    logger = logging.getLogger()
    logger.setLevel(settings.LOG_LEVEL.upper())

    # Replace uvicorn's default handlers so every record uses one format.
    if logger.hasHandlers():
        logger.handlers.clear()

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(logging.Formatter(log_format))
    logger.addHandler(stdout_handler)

    # app.log rolls over to app.log.1 .. app.log.5 past 5 MB.
    file_handler = RotatingFileHandler(
        log_dir / "app.log",
        maxBytes=5*1024*1024,
        backupCount=5
    )
    file_handler.setFormatter(logging.Formatter(log_format))
    logger.addHandler(file_handler)
