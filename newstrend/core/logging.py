"""Structured logging configuration using dictConfig."""
import logging
import logging.config
import sys
from typing import Dict, Any

from .settings import get_settings

settings = get_settings()


class ServiceNameFilter(logging.Filter):
    """Stamp every record with the running service name."""

    def __init__(self, service_name: str = "newstrend"):
        super().__init__()
        self.service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:
        record.service = self.service_name
        return True


def get_logging_config(service_name: str = None) -> Dict[str, Any]:
    """Get logging configuration dictionary.

    Production uses the JSON formatter so ``extra=`` context (batch sizes,
    job ids, keyword counts) lands as separate fields.
    """
    use_json = settings.environment == "production"

    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "service": {
                "()": ServiceNameFilter,
                "service_name": service_name or settings.app_name,
            }
        },
        "formatters": {
            "json": {
                "format": "%(asctime)s %(levelname)s %(service)s %(name)s %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
                "class": "pythonjsonlogger.jsonlogger.JsonFormatter"
            },
            "console": {
                "format": "%(asctime)s [%(service)s] [%(levelname)s] %(name)s: %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S"
            }
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": settings.log_level,
                "formatter": "json" if use_json else "console",
                "filters": ["service"],
                "stream": sys.stdout
            }
        },
        "loggers": {
            "newstrend": {
                "level": settings.log_level,
                "handlers": ["console"],
                "propagate": False
            },
            "uvicorn": {
                "level": "INFO",
                "handlers": ["console"],
                "propagate": False
            },
            "uvicorn.access": {
                "level": "WARNING",
                "handlers": ["console"],
                "propagate": False
            },
            "sqlalchemy.engine": {
                "level": "INFO" if settings.db_echo else "WARNING",
                "handlers": ["console"],
                "propagate": False
            },
            "redis": {
                "level": "WARNING",
                "handlers": ["console"],
                "propagate": False
            }
        },
        "root": {
            "level": settings.log_level,
            "handlers": ["console"]
        }
    }

    return config


def setup_logging(service_name: str = None) -> None:
    """Configure structured logging using dictConfig."""
    config = get_logging_config(service_name)
    logging.config.dictConfig(config)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance."""
    return logging.getLogger(name)
