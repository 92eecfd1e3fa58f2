"""Logging setup shared by the API process and the Celery import worker."""
import logging
import sys

from pythonjsonlogger import jsonlogger

from app.core.config import settings

_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"


def setup_logging() -> None:
    """JSON records on stdout in production, plain text elsewhere."""
    level = logging.getLevelName(settings.LOG_LEVEL.upper())
    if settings.APP_ENV == "production":
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(jsonlogger.JsonFormatter(
            _FORMAT,
            rename_fields={"asctime": "timestamp", "levelname": "level"},
            static_fields={"service": "plc-inventory-import"},
        ))
        logging.root.handlers = [handler]
        logging.root.setLevel(level)
    else:
        logging.basicConfig(level=level, format=_FORMAT)
    # SQL echo is controlled by DATABASE_ECHO
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
