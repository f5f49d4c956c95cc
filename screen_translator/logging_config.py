"""Logging setup shared by the API server and the translation core."""

from __future__ import annotations

import logging.config
import os
from pathlib import Path
from typing import Any, Dict, List

_logging_configured = False

_MAX_LOG_BYTES = 5 * 1024 * 1024


def _rotating_handler(formatter: str, path: Path) -> Dict[str, Any]:
    return {
        "class": "logging.handlers.RotatingFileHandler",
        "formatter": formatter,
        "filename": str(path),
        "maxBytes": _MAX_LOG_BYTES,
        "backupCount": 5,
        "encoding": "utf-8",
        "delay": True,
    }


def configure_logging() -> None:
    """Install uvicorn-style console logging plus optional rotating log files.

    ``APP_LOG_TO_FILE=0`` keeps everything on the console, which is what the
    test-suite and container deployments want.
    """
    global _logging_configured
    if _logging_configured:
        return

    log_level = os.getenv("APP_LOG_LEVEL", "INFO").upper()
    to_file = os.getenv("APP_LOG_TO_FILE", "1").lower() in ("1", "true", "yes")

    handlers: Dict[str, Any] = {
        "default": {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "stream": "ext://sys.stderr",
        },
        "access_stream": {
            "class": "logging.StreamHandler",
            "formatter": "access",
            "stream": "ext://sys.stdout",
        },
    }
    app_handlers: List[str] = ["default"]
    access_handlers: List[str] = ["access_stream"]

    if to_file:
        log_dir = Path(os.getenv("APP_LOG_DIR", "logs"))
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers["file"] = _rotating_handler(
            "default", log_dir / os.getenv("APP_LOG_FILE", "screen-translator.log")
        )
        handlers["access_file"] = _rotating_handler(
            "access", log_dir / os.getenv("APP_ACCESS_LOG_FILE", "screen-translator-access.log")
        )
        app_handlers.append("file")
        access_handlers.append("access_file")

    logging_config: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "()": "uvicorn.logging.DefaultFormatter",
                "fmt": "%(levelprefix)s %(asctime)s %(name)s: %(message)s",
                "datefmt": "%H:%M:%S",
                "use_colors": None,
            },
            "access": {
                "()": "uvicorn.logging.AccessFormatter",
                "fmt": "%(levelprefix)s %(client_addr)s - \"%(request_line)s\" %(status_code)s",
            },
        },
        "handlers": handlers,
        "loggers": {
            "screen_translator": {"handlers": app_handlers, "level": log_level, "propagate": False},
            "uvicorn": {"handlers": app_handlers, "level": log_level, "propagate": False},
            "uvicorn.error": {"handlers": app_handlers, "level": log_level, "propagate": False},
            "uvicorn.access": {"handlers": access_handlers, "level": log_level, "propagate": False},
            # one line per backend request is too chatty at INFO
            "httpx": {"level": "WARNING"},
        },
        "root": {"handlers": app_handlers, "level": log_level},
    }

    logging.config.dictConfig(logging_config)
    _logging_configured = True


__all__ = ["configure_logging"]
