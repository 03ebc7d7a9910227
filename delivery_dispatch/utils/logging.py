"""Structured logging configuration."""

import logging
import sys
from typing import Any

import structlog
from pythonjsonlogger import jsonlogger
from structlog.types import EventDict

from delivery_dispatch.config import Settings, get_settings

SERVICE_NAME = "delivery-dispatch"

# Third-party loggers that log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore")


def _build_handler(log_format: str) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    if log_format == "json":
        handler.setFormatter(
            jsonlogger.JsonFormatter(
                fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
                rename_fields={"levelname": "level", "asctime": "timestamp"},
                static_fields={"service": SERVICE_NAME},
            )
        )
    else:
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                datefmt="%H:%M:%S",
            )
        )
    return handler


def add_service_name(
    logger: Any, method_name: str, event_dict: EventDict
) -> EventDict:
    """Tag every structlog event with the service name."""
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def setup_logging(settings: Settings | None = None) -> None:
    """Route stdlib and structlog output through one stdout handler."""
    settings = settings or get_settings()
    log_level = getattr(logging, settings.log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(_build_handler(settings.log_format))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.log_format == "json"
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            add_service_name,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


class DispatchLogger:
    """Logger for one dispatch component (sync controller, coordinator, ...)."""

    def __init__(self, component: str, actor_id: str | None = None):
        self.component = component
        self.actor_id = actor_id
        self.logger = get_logger(component)

    def log_command(
        self,
        command: str,
        order_id: str | None = None,
        success: bool = True,
        **kwargs: Any,
    ) -> None:
        """Log the outcome of a command issued on behalf of the actor."""
        self.logger.info(
            "dispatch_command",
            component=self.component,
            actor_id=self.actor_id,
            command=command,
            order_id=order_id,
            success=success,
            **kwargs,
        )

    def log_refresh(
        self,
        outcome: str,
        silent: bool,
        duration_ms: float | None = None,
        **kwargs: Any,
    ) -> None:
        """Log one refresh cycle."""
        log_data = {
            "component": self.component,
            "outcome": outcome,
            "silent": silent,
        }

        if duration_ms is not None:
            log_data["duration_ms"] = duration_ms

        log_data.update(kwargs)
        self.logger.info("refresh_cycle", **log_data)

    def log_rejected(self, command: str, reason: str, **kwargs: Any) -> None:
        """Log a command rejected before reaching the network."""
        self.logger.warning(
            "dispatch_command_rejected",
            component=self.component,
            actor_id=self.actor_id,
            command=command,
            reason=reason,
            **kwargs,
        )

    def log_error(self, error: str, **kwargs: Any) -> None:
        """Log an error."""
        self.logger.error(
            "dispatch_error",
            component=self.component,
            actor_id=self.actor_id,
            error=error,
            **kwargs,
        )
