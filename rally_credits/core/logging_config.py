"""Logging configuration shared by the API process and the Celery worker."""

from logging.config import dictConfig

from rally_credits.core.config import settings


def build_logging_config(level: str) -> dict:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
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
            "uvicorn": {"handlers": ["console"], "level": "INFO"},
            "celery": {"handlers": ["console"], "level": "INFO"},
            "rally_credits": {"handlers": ["console"], "level": level, "propagate": False},
        },
        "root": {
            "level": "INFO",
            "handlers": ["console"],
        },
    }


def setup_logging() -> None:
    """Apply the logging configuration."""
    dictConfig(build_logging_config(settings.log_level.upper()))
