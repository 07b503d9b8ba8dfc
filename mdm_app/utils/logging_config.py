# mdm_app/utils/logging_config.py

import logging
import os
from logging.handlers import RotatingFileHandler

import structlog

TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _app_identity(app_name, app_version):
    def add_app_identity(logger, method_name, event_dict):
        if app_name:
            event_dict.setdefault("app", app_name)
        if app_version:
            event_dict.setdefault("version", app_version)
        return event_dict

    return add_app_identity


def build_json_formatter(app_name=None, app_version=None):
    """
    Stdlib formatter that renders each record as one JSON object per line.

    Fields passed through ``extra=`` end up as top-level keys next to
    ``timestamp``, ``level``, ``logger`` and ``message``.
    """

    pre_chain = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.ExtraAdder(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _app_identity(app_name, app_version),
    ]
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.EventRenamer("message"),
            structlog.processors.JSONRenderer(default=str),
        ],
        foreign_pre_chain=pre_chain,
    )


def _build_formatter(app):
    if str(app.config.get("LOG_FORMAT", "text")).lower() == "json":
        return build_json_formatter(app.config.get("APP_NAME"), app.config.get("APP_VERSION"))
    return logging.Formatter(TEXT_FORMAT)


def setup_logging(app):
    """
    Configure application logging from the monitoring config.

    Handlers are attached to the ``mdm_app`` package logger and to the Flask
    app logger, so module loggers (``logging.getLogger(__name__)``) and
    ``app.logger`` share one output. Calling this again replaces the handlers.
    """

    level_name = str(app.config.get("LOG_LEVEL", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)
    formatter = _build_formatter(app)

    handlers = []
    if app.config.get("ENABLE_CONSOLE_LOGGING", True):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    if app.config.get("ENABLE_FILE_LOGGING", False):
        log_dir = app.config.get("LOG_DIR", "logs")
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, f"{app.config.get('APP_NAME', 'mdm-engine')}.log"),
            maxBytes=int(app.config.get("LOG_FILE_MAX_BYTES", 10485760)),
            backupCount=int(app.config.get("LOG_FILE_BACKUP_COUNT", 10)),
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    for logger in (logging.getLogger("mdm_app"), app.logger):
        for handler in list(logger.handlers):
            if getattr(handler, "_mdm_managed", False):
                logger.removeHandler(handler)
                handler.close()
        for handler in handlers:
            handler._mdm_managed = True
            logger.addHandler(handler)
        logger.setLevel(level)

    logging.getLogger("mdm_app").propagate = True
    return handlers
