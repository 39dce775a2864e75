"""
Logging Configuration for the Seller Analytics Core

Structured logging for the API and the engine. Every event carries the
service name and environment; request-scoped context (the request id bound
by the API middleware) is merged from ``structlog.contextvars``. Output is
JSON for log shipping or a console rendering for development.
"""

import logging
import sys
from typing import Any, Dict, Optional

import structlog
from structlog.processors import JSONRenderer, TimeStamper
from structlog.stdlib import add_log_level, ProcessorFormatter

from seller_analytics.config.settings import MonitoringSettings, get_settings

# Driver loggers that are chatty at INFO during scans
QUIET_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "aiosqlite", "asyncio")


def add_service_context(service: str, environment: str):
    """Processor stamping service and environment onto every event"""

    def processor(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict.setdefault("service", service)
        event_dict.setdefault("environment", environment)
        return event_dict

    return processor


def configure_logging(
    monitoring: Optional[MonitoringSettings] = None,
    service: Optional[str] = None,
    environment: Optional[str] = None,
) -> None:
    """
    Configure structured logging for the application.

    Args:
        monitoring: Log level and format; defaults to the environment settings
        service: Service name stamped on every event
        environment: Deployment environment stamped on every event
    """
    settings = get_settings()
    monitoring = monitoring or settings.monitoring
    service = service or settings.app_name
    environment = environment or settings.app_env

    numeric_level = getattr(logging, monitoring.log_level.upper(), logging.INFO)
    as_json = monitoring.log_format == "json"

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        add_log_level,
        add_service_context(service, environment),
        TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        # JSON keeps tracebacks structured; the console renders them itself
        structlog.processors.dict_tracebacks if as_json else structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    renderer = JSONRenderer() if as_json else structlog.dev.ConsoleRenderer(colors=True)
    formatter = ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=shared_processors,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Route uvicorn through the same handler
    for logger_name in ["uvicorn", "uvicorn.error", "uvicorn.access"]:
        logger = logging.getLogger(logger_name)
        logger.handlers = []
        logger.addHandler(console_handler)
        logger.propagate = False
        logger.setLevel(numeric_level)

    for logger_name in QUIET_LOGGERS:
        logging.getLogger(logger_name).setLevel(max(numeric_level, logging.WARNING))

    structlog.get_logger(__name__).info(
        "Logging configured",
        level=monitoring.log_level,
        format=monitoring.log_format,
        service=service,
        environment=environment,
    )
