import datetime as dt
import logging
import os
from logging.config import dictConfig
from typing import Any, Dict, Optional

import pytz

EASTERN_TZ = pytz.timezone("America/New_York")

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def now_eastern_naive() -> dt.datetime:
    return dt.datetime.now(EASTERN_TZ).replace(tzinfo=None)


def ensure_directory(path: str) -> None:
    if path and not os.path.isdir(path):
        os.makedirs(path, exist_ok=True)


class EasternFormatter(logging.Formatter):
    """Renders record timestamps in America/New_York regardless of host timezone."""

    def formatTime(self, record, datefmt=None):
        stamp = dt.datetime.fromtimestamp(record.created, pytz.utc).astimezone(EASTERN_TZ)
        return stamp.strftime(datefmt or LOG_DATE_FORMAT)


def build_log_filename(database: str, schema: str, table: str) -> str:
    log_ts = now_eastern_naive().strftime("%Y%m%d_%H%M%S")
    return "rs2bq__{}__{}__{}__{}.log".format(database, schema, table, log_ts)


def build_logging_config(verbose: bool = False, log_file_path: Optional[str] = None) -> Dict[str, Any]:
    handlers: Dict[str, Any] = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
            "level": "DEBUG" if verbose else "INFO",
            "stream": "ext://sys.stdout",
        },
    }
    if log_file_path:
        handlers["file"] = {
            "class": "logging.FileHandler",
            "formatter": "standard",
            "level": "DEBUG",
            "filename": log_file_path,
            "encoding": "utf8",
        }
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "()": EasternFormatter,
                "fmt": LOG_FORMAT,
                "datefmt": LOG_DATE_FORMAT,
            },
        },
        "handlers": handlers,
        "loggers": {
            "rs2bq": {
                "handlers": list(handlers.keys()),
                "level": "DEBUG",
                "propagate": True,
            },
        },
    }


def configure_logging(verbose: bool = False,
                      log_dir: Optional[str] = None,
                      log_filename: Optional[str] = None) -> Optional[str]:
    """Install handlers for the rs2bq logger tree. Returns the log file path, if any."""
    log_file_path = None
    if log_dir:
        ensure_directory(log_dir)
        log_file_path = os.path.join(log_dir, log_filename or "rs2bq.log")
    dictConfig(build_logging_config(verbose=verbose, log_file_path=log_file_path))
    return log_file_path
