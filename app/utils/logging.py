import json
import logging
import os
import sys
from datetime import date
from pathlib import Path
from typing import Any, Dict

from loguru import logger

from app.utils.context import get_request_id

DEFAULT_REQUEST_ID = "app"

# Third-party loggers routed into loguru, with the minimum level kept
INTERCEPTED_LOGGERS = {
    "uvicorn": logging.INFO,
    "uvicorn.error": logging.INFO,
    "uvicorn.access": logging.INFO,
    "fastapi": logging.INFO,
    "celery": logging.INFO,
    "httpx": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
}


class InterceptHandler(logging.Handler):
    """Forwards stdlib ``logging`` records to loguru."""

    def emit(self, record):
        try:
            level = logger.level(record.levelname).name
        except (AttributeError, ValueError):
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def _inject_request_id(record):
    # Loggers are created at import time; the request/task id is only known
    # when the record is emitted.
    record["extra"]["request_id"] = (
        get_request_id() or record["extra"].get("request_id") or DEFAULT_REQUEST_ID
    )


class CustomizeLogger:
    @classmethod
    def make_logger(cls, config_path: Path, environment: str = "logger"):
        profiles = cls.load_logging_config(config_path)
        profile = profiles.get(environment, profiles["logger"])

        level = os.getenv("LOG_LEVEL", profile["level"]).upper()
        log_file = Path(os.getenv("LOG_DIR", profile["log_dir"])) / (
            f"{date.today().isoformat()}-{profile['filename']}"
        )

        logger.remove()
        logger.configure(
            extra={"request_id": DEFAULT_REQUEST_ID}, patcher=_inject_request_id
        )

        logger.add(
            sys.stdout,
            level=level,
            format=profile["console_format"],
            colorize=True,
            backtrace=True,
            enqueue=True,
        )
        logger.add(
            str(log_file),
            level=level,
            rotation=profile["rotation"],
            retention=profile["retention"],
            backtrace=True,
            enqueue=True,
            colorize=False,
            **cls._file_sink_format(profile),
        )

        cls._setup_intercept_handlers()
        return logger

    @staticmethod
    def _file_sink_format(profile: Dict[str, Any]) -> Dict[str, Any]:
        if profile.get("use_json_logs") and profile.get("file_format") == "json":
            return {"serialize": True}
        return {"format": profile["file_format"]}

    @staticmethod
    def _setup_intercept_handlers():
        logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

        for name, level in INTERCEPTED_LOGGERS.items():
            std_logger = logging.getLogger(name)
            std_logger.handlers = [InterceptHandler()]
            std_logger.setLevel(level)
            std_logger.propagate = False

    @staticmethod
    def load_logging_config(config_path: Path) -> Dict[str, Dict[str, Any]]:
        with open(config_path) as config_file:
            return json.load(config_file)


config_path = Path(__file__).resolve().parents[2] / "logging_config.json"
environment = (
    "production"
    if os.getenv("ENVIRONMENT", "development") == "production"
    else "logger"
)
custom_logger = CustomizeLogger.make_logger(config_path, environment)


def get_logger():
    """Logger whose records carry the active request or task id."""
    return custom_logger.bind(request_id=get_request_id() or DEFAULT_REQUEST_ID)
