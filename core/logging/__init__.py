# Structured logging for the signal relay
from typing import Optional, Dict, Any
import structlog

from core.config.settings import Settings
from .correlation import CorrelationIdManager, create_correlation_context
from .enhanced_logging import (
    configure_enhanced_logging,
    get_enhanced_logger,
    get_logging_statistics,
)


def configure_logging(settings: Settings) -> None:
    """Configure the logging system once per process."""
    configure_enhanced_logging(settings)


def get_logger(name: str, component: Optional[str] = None) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return get_enhanced_logger(name, component)


def bind_account_context(logger: structlog.BoundLogger, account_id: int, client_id: Optional[str] = None) -> structlog.BoundLogger:
    """Bind account context consistently to a logger.

    Adds `account_id` and, when known, the brokerage `client_id`.
    """
    ctx: Dict[str, Any] = {"account_id": account_id}
    if client_id:
        ctx["client_id"] = client_id
    return logger.bind(**ctx)


def get_statistics() -> Dict[str, Any]:
    """Get logging system statistics."""
    return get_logging_statistics()


__all__ = [
    "configure_logging",
    "get_logger",
    "bind_account_context",
    "get_statistics",
    "CorrelationIdManager",
    "create_correlation_context",
]
