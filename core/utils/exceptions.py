# Structured exception hierarchy for the signal relay

from typing import Dict, Any, Optional
from datetime import datetime, timezone


class SignalRelayException(Exception):
    """Base exception for all signal relay specific errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None,
                 correlation_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.correlation_id = correlation_id
        self.timestamp = datetime.now(timezone.utc)


class TransientError(SignalRelayException):
    """Base class for transient errors that may succeed on a later attempt"""

    def __init__(self, message: str, retry_count: int = 0, max_retries: int = 8,
                 details: Optional[Dict[str, Any]] = None, correlation_id: Optional[str] = None):
        super().__init__(message, details, correlation_id)
        self.retry_count = retry_count
        self.max_retries = max_retries
        self.retryable = retry_count < max_retries


class PermanentError(SignalRelayException):
    """Base class for permanent errors that must never be retried"""
    pass


# Validation Errors
class ValidationError(PermanentError):
    """Malformed signal or input - rejected before sizing"""

    def __init__(self, message: str, field: str, value: Any,
                 expected_type: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value
        self.expected_type = expected_type


# Configuration Errors
class ConfigurationError(PermanentError):
    """Configuration validation errors"""

    def __init__(self, message: str, config_field: str, config_value: Any,
                 **kwargs):
        super().__init__(message, **kwargs)
        self.config_field = config_field
        self.config_value = config_value


# Instrument Errors
class IdentifierNotFoundError(PermanentError):
    """Ticker could not be resolved to a security id after every strategy"""

    def __init__(self, message: str, ticker: str, attempts: int = 0, **kwargs):
        super().__init__(message, **kwargs)
        self.ticker = ticker
        self.attempts = attempts


class InstrumentCatalogError(TransientError):
    """Instrument feed could not be fetched or parsed"""

    def __init__(self, message: str, source: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.source = source


# Broker Integration Errors
class GatewayError(TransientError):
    """Network, timeout or temporary exchange error from the brokerage gateway"""

    def __init__(self, message: str, broker: str, status_code: Optional[int] = None,
                 api_response: Optional[Dict[str, Any]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.broker = broker
        self.status_code = status_code
        self.api_response = api_response or {}


class TerminalOrderFailure(PermanentError):
    """Order rejected or cancelled by the broker - never retried"""

    def __init__(self, message: str, order_id: str, order_status: str, **kwargs):
        super().__init__(message, **kwargs)
        self.order_id = order_id
        self.order_status = order_status


def is_retryable_error(error: Exception) -> bool:
    """
    Determine if an error should be retried

    Returns:
        True if error is transient and retryable, False otherwise
    """
    if isinstance(error, TransientError):
        return error.retryable
    return False


def create_error_context(error: Exception, operation: str,
                         additional_context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Create structured error context for logging

    Args:
        error: The exception that occurred
        operation: The operation that failed
        additional_context: Additional context information

    Returns:
        Structured error context dictionary
    """
    context = {
        "error_type": type(error).__name__,
        "error_message": str(error),
        "operation": operation,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "retryable": is_retryable_error(error)
    }

    if isinstance(error, SignalRelayException):
        if error.correlation_id:
            context["correlation_id"] = error.correlation_id
        if error.details:
            context["error_details"] = error.details

        if isinstance(error, TransientError):
            context["retry_count"] = error.retry_count
            context["max_retries"] = error.max_retries

        if isinstance(error, GatewayError):
            context["broker"] = error.broker
            if error.status_code is not None:
                context["status_code"] = error.status_code

        if isinstance(error, IdentifierNotFoundError):
            context["ticker"] = error.ticker

        if isinstance(error, TerminalOrderFailure):
            context["order_id"] = error.order_id
            context["order_status"] = error.order_status

    if additional_context:
        context.update(additional_context)

    return context
