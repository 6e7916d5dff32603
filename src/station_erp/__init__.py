"""Station ERP: approval workflow and fuel inventory ledger on an Excel workbook.

Importing the package configures the shared ``station_erp`` logger. The log
directory and level can be overridden with ``STATION_ERP_LOG_DIR`` and
``STATION_ERP_LOG_LEVEL``.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


__version__ = "0.1.0"

PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = Path(os.environ.get("STATION_ERP_LOG_DIR", PROJECT_ROOT / ".logs"))
LOG_FILE = LOG_DIR / "station_erp.log"
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"


def _resolve_level(raw: str | None) -> int:
    level = logging.getLevelName((raw or "INFO").upper())
    # getLevelName returns a string for unknown names
    return level if isinstance(level, int) else logging.INFO


def _configure_logging() -> logging.Logger:
    """Attach the rotating file handler and the stderr handler once."""

    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    level = _resolve_level(os.environ.get("STATION_ERP_LOG_LEVEL"))
    logger.setLevel(level)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=1_000_000,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    except OSError as exc:
        print(
            f"Warning: station_erp cannot write its log file '{LOG_FILE}': {exc}",
            file=sys.stderr,
        )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(max(level, logging.WARNING))
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


log = _configure_logging()
log.debug("Station ERP %s logging to '%s'", __version__, LOG_FILE)
