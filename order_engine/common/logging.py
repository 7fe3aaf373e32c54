"""Structured logging setup for the order execution engine."""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any, Optional

import structlog
from structlog.typing import Processor

from .config import Settings


def setup_logging(app_settings: Optional[Settings] = None) -> None:
    """Setup structured logging with both standard and structured loggers."""
    if app_settings is None:
        from .config import settings as app_settings

    # Ensure log directory exists
    log_file = Path(app_settings.logging.log_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    _setup_stdlib_logging(app_settings)
    _setup_structlog(app_settings)


def _setup_stdlib_logging(app_settings: Settings) -> None:
    """Setup standard library logging."""
    config = app_settings.logging
    level = getattr(logging, config.level.upper())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)

    # File handler with rotation
    file_handler = logging.handlers.RotatingFileHandler(
        config.log_file,
        maxBytes=config.max_file_size,
        backupCount=config.backup_count,
    )
    file_handler.setLevel(level)

    if config.use_json:
        formatter = logging.Formatter(
            '{"timestamp":"%(asctime)s","level":"%(levelname)s","logger":"%(name)s","message":"%(message)s"}'
        )
    else:
        formatter = logging.Formatter(config.format)

    console_handler.setFormatter(formatter)
    file_handler.setFormatter(formatter)

    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    # Quieten chatty libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("websockets").setLevel(logging.INFO)


def _setup_structlog(app_settings: Settings) -> None:
    """Setup structlog configuration."""
    config = app_settings.logging

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
    ]

    if config.add_caller_info:
        processors.append(structlog.processors.CallsiteParameterAdder())

    processors.extend([
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.dict_tracebacks,
    ])

    if app_settings.debug:
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, config.level.upper())
        ),
        logger_factory=structlog.WriteLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


class OrderEventLogger:
    """Specialized logger for order lifecycle events."""

    def __init__(self, name: str):
        self.logger = get_logger(name)

    def log_transition(
        self,
        order_id: str,
        status: str,
        attempt: int,
        **kwargs: Any,
    ) -> None:
        """Log a status transition."""
        self.logger.info(
            "Order transition",
            order_id=order_id,
            status=status,
            attempt=attempt,
            **kwargs,
        )

    def log_routing(
        self,
        order_id: str,
        venue: str,
        rule: str,
        reason: str,
        **kwargs: Any,
    ) -> None:
        """Log a routing decision."""
        self.logger.info(
            "Routing decision",
            order_id=order_id,
            venue=venue,
            rule=rule,
            reason=reason,
            **kwargs,
        )

    def log_settlement(
        self,
        order_id: str,
        venue: str,
        settlement_ref: str,
        price: float,
        amount: float,
        **kwargs: Any,
    ) -> None:
        """Log a settled execution."""
        self.logger.info(
            "Order settled",
            order_id=order_id,
            venue=venue,
            settlement_ref=settlement_ref,
            price=price,
            amount=amount,
            **kwargs,
        )

    def log_failure(
        self,
        order_id: str,
        reason: str,
        attempt: int,
        max_attempts: int,
        will_retry: bool,
        **kwargs: Any,
    ) -> None:
        """Log a failed attempt."""
        log = self.logger.warning if will_retry else self.logger.error
        log(
            "Order attempt failed",
            order_id=order_id,
            reason=reason,
            attempt=attempt,
            max_attempts=max_attempts,
            will_retry=will_retry,
            **kwargs,
        )
