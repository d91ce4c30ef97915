"""
Structured Logging Setup

Consistent logging configuration across all services.
Uses JSON format for structured logs in production.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

# Attributes every LogRecord carries; anything else came in via `extra`
_RESERVED_ATTRS = frozenset((
    "name", "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "exc_info", "exc_text", "stack_info",
    "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "service",
    "message", "taskName",
))


class JsonFormatter(logging.Formatter):
    """JSON log formatter for structured logging"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "service": getattr(record, "service", "unknown"),
            "message": record.getMessage(),
            "logger": record.name,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


class ServiceLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that adds service name to all logs"""

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        kwargs.setdefault("extra", {})
        kwargs["extra"]["service"] = self.extra.get("service", "unknown")
        return msg, kwargs


def setup_logging(
    service_name: str,
    log_level: str = "INFO",
    json_format: bool = True,
) -> logging.Logger:
    """
    Set up structured logging for a service.

    Args:
        service_name: Name of the service (e.g., "supervisor", "certificate")
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON format (True for production, False for console)

    Returns:
        Configured logger instance
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logger = logging.getLogger(f"aovpn.{service_name}")
    logger.setLevel(numeric_level)

    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)

    if json_format:
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handler.setFormatter(formatter)
    logger.addHandler(handler)

    # Don't propagate to root logger
    logger.propagate = False

    return logger


def get_service_logger(service_name: str) -> ServiceLoggerAdapter:
    """
    Get a logger adapter with service context.

    Level and format come from AOVPN_LOG_LEVEL / AOVPN_LOG_FORMAT.
    """
    log_level = os.environ.get("AOVPN_LOG_LEVEL", "INFO")
    json_format = os.environ.get("AOVPN_LOG_FORMAT", "json").lower() == "json"

    logger = setup_logging(service_name, log_level, json_format)
    return ServiceLoggerAdapter(logger, {"service": service_name})


def reconfigure_loggers(log_level: str, json_format: bool) -> None:
    """Re-apply level and format to every aovpn logger created so far"""
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    if json_format:
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    for name, logger in logging.Logger.manager.loggerDict.items():
        if not name.startswith("aovpn.") or not isinstance(logger, logging.Logger):
            continue
        logger.setLevel(numeric_level)
        for handler in logger.handlers:
            handler.setLevel(numeric_level)
            handler.setFormatter(formatter)


def log_restart_attempt(
    logger: logging.Logger | logging.LoggerAdapter,
    service_name: str,
    attempt: Any,
    max_attempts: int,
) -> None:
    """Log the result of one restart attempt"""
    extra = {
        "service_name": service_name,
        "attempt": attempt.attempt_number,
        "max_attempts": max_attempts,
        "restart_outcome": getattr(attempt.restart_outcome, "value", None),
        "service_state": attempt.service_state.value,
        "port_listening": attempt.port_listening,
        "elapsed_s": round(attempt.elapsed_seconds, 1),
    }

    if attempt.healthy:
        logger.info(
            f"{service_name} healthy after attempt "
            f"{attempt.attempt_number}/{max_attempts}",
            extra=extra,
        )
    else:
        logger.warning(
            f"{service_name} attempt {attempt.attempt_number}/{max_attempts} "
            f"failed: {attempt.error or 'unhealthy'}",
            extra=extra,
        )
