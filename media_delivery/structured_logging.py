"""
Structured logging for the delivery service, built on structlog.

Events are key/value pairs. Outside of tests they are handed to the stdlib
root logger and written as JSON lines (python-json-logger) to rotating files
under ``<instance>/logs``:

- ``app.json``    every event at LOG_LEVEL and above
- ``error.json``  WARNING and above only

A plain-text copy goes to stdout. Under TESTING nothing touches the disk and
events are printed in console format.

Query signatures and client secrets never reach the log files: keys that
look like credentials are masked before rendering.

Usage:
    import structlog
    logger = structlog.get_logger(__name__)
    logger.info("delivery_rejected", status=403, reason="Signature is invalid.")
"""
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import structlog
from pythonjsonlogger.json import JsonFormatter

# Set once per process; create_app may run many times (tests, scripts)
_STRUCTLOG_CONFIGURED = False

REDACTED = "***REDACTED***"
SENSITIVE_KEYS = {"secret", "sig", "signature", "token", "authorization", "cookie"}
SENSITIVE_FRAGMENTS = ("secret", "password")

# Endpoints whose INFO events are pure noise (load balancer probes)
QUIET_ENDPOINTS = {"api.health_check"}

DEFAULT_MAX_BYTES = 20 * 1024 * 1024
DEFAULT_BACKUP_COUNT = 5


def get_log_dir(instance_path: str, override: str | None = None) -> str:
    """Resolve the directory where log files will be stored.

    Order of preference:
    1) explicit override argument
    2) LOG_DIR env var
    3) <instance_path>/logs
    """
    base = override or os.environ.get("LOG_DIR") or os.path.join(instance_path, "logs")
    try:
        Path(base).mkdir(parents=True, exist_ok=True)
    except OSError:
        # Read-only deployments fall back to console output only
        pass
    return base


def get_log_level(app_config: dict | None = None) -> int:
    """Determine log level from config or environment."""
    if app_config and "LOG_LEVEL" in app_config:
        level_name = str(app_config["LOG_LEVEL"])
    else:
        level_name = os.environ.get("LOG_LEVEL", "INFO")
    return getattr(logging, level_name.upper(), logging.INFO)


def _add_request_context(logger, method_name, event_dict):
    """Attach endpoint, method, path and request id while serving a request."""
    from flask import g, has_request_context, request

    if not has_request_context():
        return event_dict
    event_dict.setdefault("endpoint", request.endpoint)
    event_dict.setdefault("method", request.method)
    event_dict.setdefault("path", request.path)
    event_dict.setdefault("remote_addr", request.remote_addr)
    request_id = getattr(g, "request_id", None)
    if request_id:
        event_dict["request_id"] = request_id
    return event_dict


def _filter_health_checks(logger, method_name, event_dict):
    if method_name == "info" and event_dict.get("endpoint") in QUIET_ENDPOINTS:
        raise structlog.DropEvent
    return event_dict


def _censor_sensitive_data(logger, method_name, event_dict):
    """Mask signatures, secrets and credentials."""
    for key in list(event_dict):
        lowered = key.lower()
        if lowered in SENSITIVE_KEYS or any(f in lowered for f in SENSITIVE_FRAGMENTS):
            event_dict[key] = REDACTED
    return event_dict


def _json_file_handler(path: str, level: int, app_config: dict) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        path,
        maxBytes=int(app_config.get("LOG_MAX_BYTES", DEFAULT_MAX_BYTES)),
        backupCount=int(app_config.get("LOG_BACKUP_COUNT", DEFAULT_BACKUP_COUNT)),
    )
    handler.setLevel(level)
    handler.setFormatter(
        JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    return handler


def _console_handler(level: int) -> logging.StreamHandler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)-8s %(name)s %(message)s", "%Y-%m-%d %H:%M:%S")
    )
    return handler


def configure_component_loggers(base_level: int) -> None:
    # Request lines from the dev server are only useful while debugging
    logging.getLogger("werkzeug").setLevel(
        logging.DEBUG if base_level <= logging.DEBUG else logging.WARNING
    )
    # Pillow logs every plugin it probes at DEBUG
    logging.getLogger("PIL").setLevel(logging.WARNING)


def _shared_processors() -> list:
    return [
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _censor_sensitive_data,
    ]


def configure_structlog(app, role: str = "web") -> dict:
    """Configure structlog for the Flask application.

    Args:
        app: Flask app instance (must have .instance_path and .config)
        role: "web" or "generator" for context identification

    Returns:
        dict with keys: log_dir, app_log, error_log (empty under TESTING)
    """
    global _STRUCTLOG_CONFIGURED

    if app.config.get("TESTING"):
        if not _STRUCTLOG_CONFIGURED:
            structlog.configure(
                processors=_shared_processors()
                + [structlog.dev.ConsoleRenderer(colors=False)],
                wrapper_class=structlog.make_filtering_bound_logger(logging.INFO),
                context_class=dict,
                logger_factory=structlog.PrintLoggerFactory(),
                cache_logger_on_first_use=True,
            )
            _STRUCTLOG_CONFIGURED = True
        return {"log_dir": "", "app_log": "", "error_log": ""}

    level = get_log_level(app.config)
    log_dir = get_log_dir(app.instance_path)
    paths = {
        "app_log": os.path.join(log_dir, "app.json"),
        "error_log": os.path.join(log_dir, "error.json"),
    }

    if not _STRUCTLOG_CONFIGURED:
        root = logging.getLogger()
        root.setLevel(level)
        root.handlers.clear()
        root.addHandler(_json_file_handler(paths["app_log"], level, app.config))
        root.addHandler(_json_file_handler(paths["error_log"], logging.WARNING, app.config))
        root.addHandler(_console_handler(level))
        configure_component_loggers(level)

        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.stdlib.add_logger_name,
                _add_request_context,
                _filter_health_checks,
            ]
            + _shared_processors()
            + [
                structlog.processors.format_exc_info,
                # Event becomes the message, everything else lands in JSON fields
                structlog.stdlib.render_to_log_kwargs,
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )
        _STRUCTLOG_CONFIGURED = True

    structlog.get_logger(__name__).debug(
        "logging_configured", role=role, log_dir=log_dir, level=logging.getLevelName(level)
    )
    return {"log_dir": log_dir, **paths}
