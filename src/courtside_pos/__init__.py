"""Checkout transaction core for the Courtside sports-facility point of sale."""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR_ENV = "COURTSIDE_LOG_DIR"
LOG_FILE_NAME = "courtside_pos.log"
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def resolve_log_dir() -> Path:
    """Return the log directory: ``$COURTSIDE_LOG_DIR`` or ``<project>/.logs``."""

    override = os.environ.get(LOG_DIR_ENV)
    return Path(override).expanduser() if override else PROJECT_ROOT / ".logs"


def _file_handler(log_file: Path) -> Optional[logging.Handler]:
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(log_file, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
    except OSError as exc:
        print(f"Warning: unable to initialize log file at '{log_file}': {exc}", file=sys.stderr)
        return None
    return handler


def configure_logging(name: str = __name__, log_dir: Optional[Path] = None) -> logging.Logger:
    """Attach a rotating file handler and a stderr handler to logger ``name``.

    Calling it again for a logger that already has handlers is a no-op, so
    importing the package repeatedly never duplicates output.
    """

    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(logging.INFO)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    handlers = [
        _file_handler((log_dir or resolve_log_dir()) / LOG_FILE_NAME),
        logging.StreamHandler(sys.stderr),
    ]
    for handler in handlers:
        if handler is None:
            continue
        handler.setFormatter(formatter)
        handler.setLevel(logging.INFO)
        logger.addHandler(handler)
    return logger


log = configure_logging()
log.info("Logger initialized for the 'courtside_pos' package.")
