import logging
import logging.config

from config import settings

APP_LOGGER_NAME = "edulearn"

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "json": {
            "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
            "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s %(module)s %(funcName)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "json",
            "stream": "ext://sys.stdout",
        },
    },
    "loggers": {
        "": {"handlers": ["console"], "level": "INFO"},
        APP_LOGGER_NAME: {"handlers": ["console"], "level": settings.LOG_LEVEL.upper(), "propagate": False},
        "uvicorn": {"handlers": ["console"], "level": "INFO", "propagate": False},
        "uvicorn.error": {"handlers": ["console"], "level": "INFO", "propagate": False},
        "uvicorn.access": {"handlers": ["console"], "level": "INFO", "propagate": False},
    },
}

_configured = False


def setup_logging() -> logging.Logger:
    # Configure once per process
    global _configured
    if not _configured:
        logging.config.dictConfig(LOGGING)
        _configured = True
    return logging.getLogger(APP_LOGGER_NAME)


def get_logger(name: str | None = None) -> logging.Logger:
    base = logging.getLogger(APP_LOGGER_NAME)
    return base.getChild(name) if name else base
