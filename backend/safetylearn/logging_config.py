import logging
import os
from logging.config import dictConfig
from typing import Any, Dict

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
TELEMETRY_LOG_FORMAT = "%(asctime)s %(message)s"


def _flag(name: str) -> bool:
    return os.getenv(name, "0").strip().lower() in ("1", "true", "yes")


def build_logging_config() -> Dict[str, Any]:
    """dictConfig payload for the API process.

    Telemetry lines carry their own JSON payload and go to a dedicated
    handler that does not propagate to root.
    """
    level = os.getenv("SAFETYLEARN_LOG_LEVEL", "INFO").upper()
    telemetry_level = os.getenv("SAFETYLEARN_TELEMETRY_LOG_LEVEL", "INFO").upper()
    http_level = "DEBUG" if _flag("SAFETYLEARN_DEBUG_HTTP") else "WARNING"

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {"format": DEFAULT_LOG_FORMAT},
            "telemetry": {"format": TELEMETRY_LOG_FORMAT},
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "default",
            },
            "telemetry": {
                "class": "logging.StreamHandler",
                "formatter": "telemetry",
            },
        },
        "loggers": {
            "safetylearn.telemetry": {
                "handlers": ["telemetry"],
                "level": telemetry_level,
                "propagate": False,
            },
            "httpx": {"level": http_level},
            "httpcore": {"level": http_level},
            "uvicorn.access": {"level": "DEBUG" if http_level == "DEBUG" else "INFO"},
            "sqlalchemy.engine": {"level": "INFO" if _flag("SAFETYLEARN_LOG_SQL") else "WARNING"},
        },
        "root": {
            "handlers": ["default"],
            "level": level,
        },
    }


def configure_logging() -> None:
    """Configure process logging from SAFETYLEARN_* environment flags."""
    dictConfig(build_logging_config())
    logging.getLogger(__name__).debug("Logging configured")
