"""Logging configuration helpers for the FastAPI server."""

from __future__ import annotations

import logging.config
import os
from pathlib import Path
from typing import Any, Dict

_logging_configured = False

_MAX_BYTES = 5 * 1024 * 1024
_BACKUP_COUNT = 5


def _rotating_file(formatter: str, path: Path) -> Dict[str, Any]:
    return {
        "class": "logging.handlers.RotatingFileHandler",
        "formatter": formatter,
        "filename": str(path),
        "maxBytes": _MAX_BYTES,
        "backupCount": _BACKUP_COUNT,
        "encoding": "utf-8",
        "delay": True,
    }


def build_logging_config(log_dir: Path, log_level: str, app_log_level: str | None = None) -> Dict[str, Any]:
    """dictConfig for the server; ``app_log_level`` tunes the yomu loggers alone."""
    log_path = log_dir / os.getenv("YOMU_LOG_FILE", "yomu.log")
    access_log_path = log_dir / os.getenv("YOMU_ACCESS_LOG_FILE", "yomu-access.log")
    app_handlers = ["default", "file"]
    app_level = app_log_level or log_level
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "()": "uvicorn.logging.DefaultFormatter",
                "fmt": "%(levelprefix)s %(asctime)s [%(threadName)s] %(name)s: %(message)s",
                "use_colors": None,
            },
            "access": {
                "()": "uvicorn.logging.AccessFormatter",
                "fmt": "%(levelprefix)s %(client_addr)s - \"%(request_line)s\" %(status_code)s",
            },
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stderr",
            },
            "file": _rotating_file("default", log_path),
            "access_stream": {
                "class": "logging.StreamHandler",
                "formatter": "access",
                "stream": "ext://sys.stdout",
            },
            "access_file": _rotating_file("access", access_log_path),
        },
        "loggers": {
            "yomu": {"handlers": app_handlers, "level": app_level, "propagate": False},
            "uvicorn": {"handlers": app_handlers, "level": log_level, "propagate": False},
            "uvicorn.error": {"handlers": app_handlers, "level": log_level, "propagate": False},
            "uvicorn.access": {
                "handlers": ["access_stream", "access_file"],
                "level": log_level,
                "propagate": False,
            },
        },
        "root": {"handlers": app_handlers, "level": log_level},
    }


def configure_logging() -> None:
    """Setup uvicorn-compatible logging with rotating file handlers."""
    global _logging_configured
    if _logging_configured:
        return

    log_dir = Path(os.getenv("YOMU_LOG_DIR", "logs"))
    log_dir.mkdir(parents=True, exist_ok=True)
    log_level = os.getenv("YOMU_LOG_LEVEL", "INFO").upper()
    app_log_level = os.getenv("YOMU_APP_LOG_LEVEL", "").upper() or None

    logging.config.dictConfig(build_logging_config(log_dir, log_level, app_log_level))
    _logging_configured = True


__all__ = ["configure_logging", "build_logging_config"]
