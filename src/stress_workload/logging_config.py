import copy
import logging
import logging.config
import os
from datetime import datetime, timezone
from pathlib import Path

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "%(asctime)s %(levelname)-6s %(name)8s:%(lineno)d %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "stream": "ext://sys.stdout",
        },
    },
    "loggers": {
        "stress_workload": {
            "level": LOG_LEVEL,
            "handlers": ["console"],
            "propagate": False, # Don't pass 'stress_workload' logs up to the root logger
        },
        # Shut the log levels for libraries up
        "uvicorn.access": {
             "level": "WARNING", # Quiets the noisy access logs
             "handlers": ["console"],
             "propagate": False,
        },
        "web3": {
            "level": "WARNING",
            "handlers": ["console"],
            "propagate": False,
        },
        "urllib3": {
            "level": "WARNING",
            "handlers": ["console"],
            "propagate": False,
        },
    },
    # Default for all other loggers
    "root": {
        "level": "WARNING",
        "handlers": ["console"],
    },
}


def session_log_file(log_dir: Path) -> Path:
    """One append-only event log per session, named after its start time."""
    stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")
    return Path(log_dir) / f"stress-test-{stamp}.log"


def setup_logging(log_file: Path | None = None) -> dict:
    """Apply the logging configuration, adding the session log file when given."""
    config = copy.deepcopy(LOGGING_CONFIG)
    if log_file is not None:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        config["handlers"]["file"] = {
            "class": "logging.FileHandler",
            "formatter": "default",
            "filename": str(log_file),
            "mode": "a",
        }
        for logger in [*config["loggers"].values(), config["root"]]:
            logger["handlers"].append("file")
    logging.config.dictConfig(config)
    os.environ.setdefault("PYTHONUNBUFFERED", "1")
    return config
