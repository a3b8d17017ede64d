# flask_app/utils/logging_config.py

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

# Attributes every LogRecord carries; anything else came in through ``extra=``
_RESERVED_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """Render records as one JSON object per line, keeping ``extra`` fields."""

    def __init__(self, app_name=None):
        super().__init__()
        self.app_name = app_name

    def format(self, record):
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.app_name:
            payload["app"] = self.app_name
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _build_formatter(app):
    if str(app.config.get("LOG_FORMAT", "text")).lower() == "json":
        return JsonFormatter(app_name=app.config.get("APP_NAME"))
    return logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")


def setup_logging(app):
    """
    Configure ``app.logger`` from the monitoring config.

    Safe to call more than once; handlers installed by a previous call are
    replaced rather than stacked.
    """
    level_name = str(app.config.get("LOG_LEVEL", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    for handler in list(app.logger.handlers):
        if getattr(handler, "_records_handler", False):
            app.logger.removeHandler(handler)
            handler.close()

    formatter = _build_formatter(app)

    if app.config.get("ENABLE_CONSOLE_LOGGING", True):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        console_handler.setLevel(level)
        console_handler._records_handler = True
        app.logger.addHandler(console_handler)

    if app.config.get("ENABLE_FILE_LOGGING", False):
        log_dir = app.config.get("LOG_DIR", "logs")
        try:
            os.makedirs(log_dir, exist_ok=True)
            file_handler = RotatingFileHandler(
                os.path.join(log_dir, "app.log"),
                maxBytes=int(app.config.get("LOG_FILE_MAX_BYTES", 10485760)),
                backupCount=int(app.config.get("LOG_FILE_BACKUP_COUNT", 10)),
                encoding="utf-8",
            )
        except OSError as exc:
            app.logger.warning("File logging disabled, cannot open %s: %s", log_dir, exc)
        else:
            file_handler.setFormatter(formatter)
            file_handler.setLevel(level)
            file_handler._records_handler = True
            app.logger.addHandler(file_handler)

    app.logger.setLevel(level)
    return app.logger
