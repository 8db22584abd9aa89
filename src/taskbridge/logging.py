"""Logging configuration based on environment."""

import logging
import sys

from taskbridge.config import settings

# Development format: cleaner
DEV_FORMAT = "%(levelname)s:     %(name)s - %(message)s"

# Production format: request ID included for correlating webhook deliveries
PROD_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s"

# Load balancers poll these every few seconds
PROBE_PATHS = ("/api/health",)

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "hpack": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "saq": logging.INFO,
}


class ProbeAccessFilter(logging.Filter):
    """Drop uvicorn access lines for health probes."""

    def filter(self, record: logging.LogRecord) -> bool:
        args = record.args
        if isinstance(args, tuple) and len(args) >= 3:
            path = str(args[2])
            return not path.startswith(PROBE_PATHS)
        return True


def get_uvicorn_log_config() -> dict:
    """dictConfig for uvicorn, sharing the request-ID filter with app logs."""
    is_dev = settings.is_development

    if is_dev:
        access_fmt = '%(levelprefix)s "%(request_line)s" %(status_code)s'
        default_fmt = "%(levelprefix)s %(message)s"
    else:
        access_fmt = '%(asctime)s %(levelprefix)s %(client_addr)s - "%(request_line)s" %(status_code)s'
        default_fmt = "%(asctime)s %(levelprefix)s [%(request_id)s] %(message)s"

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "request_context": {"()": "taskbridge.api.middleware.RequestContextFilter"},
            "skip_probes": {"()": "taskbridge.logging.ProbeAccessFilter"},
        },
        "formatters": {
            "access": {"()": "uvicorn.logging.AccessFormatter", "fmt": access_fmt},
            "default": {"()": "uvicorn.logging.DefaultFormatter", "fmt": default_fmt},
        },
        "handlers": {
            "access": {
                "class": "logging.StreamHandler",
                "formatter": "access",
                "filters": [] if is_dev else ["skip_probes"],
                "stream": "ext://sys.stdout",
            },
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "filters": ["request_context"],
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": {
            "uvicorn.access": {"handlers": ["access"], "level": "INFO", "propagate": False},
            "uvicorn.error": {"handlers": ["default"], "level": "INFO", "propagate": False},
        },
        "root": {"handlers": ["default"], "level": settings.log_level},
    }


def setup_logging() -> None:
    """Configure logging for the worker and CLI processes."""
    from taskbridge.api.middleware import RequestContextFilter

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestContextFilter())
    handler.setFormatter(logging.Formatter(DEV_FORMAT if settings.is_development else PROD_FORMAT))

    logging.basicConfig(level=getattr(logging, settings.log_level), handlers=[handler], force=True)

    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)
