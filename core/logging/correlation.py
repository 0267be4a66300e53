"""
Correlation ID context for tracing one signal across account fan-out,
placement and rebase logs.
"""

import contextvars
from contextlib import contextmanager
from typing import Optional, Dict, Any, Iterator

from core.utils.ids import generate_correlation_id

# Context variable to store correlation ID for the current operation
_correlation_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    'correlation_id', default=None
)

# Context variable to store additional correlation context
_correlation_context: contextvars.ContextVar[Optional[Dict[str, Any]]] = contextvars.ContextVar(
    'correlation_context', default=None
)


class CorrelationIdManager:
    """Manager for correlation ID lifecycle and context propagation"""

    @staticmethod
    def get_correlation_id() -> Optional[str]:
        return _correlation_id.get()

    @staticmethod
    def ensure_correlation_id() -> str:
        """
        Ensure a correlation ID exists, generating one if needed.

        Returns:
            Current or newly generated correlation ID
        """
        current_id = _correlation_id.get()
        if current_id is None:
            current_id = generate_correlation_id()
            _correlation_id.set(current_id)
        return current_id

    @staticmethod
    def get_correlation_context() -> Dict[str, Any]:
        return dict(_correlation_context.get() or {})

    @staticmethod
    def clear_correlation() -> None:
        """Clear correlation ID and context from current context"""
        _correlation_id.set(None)
        _correlation_context.set(None)


@contextmanager
def create_correlation_context(correlation_id: Optional[str] = None, **context) -> Iterator[str]:
    """
    Run a block under a correlation ID, restoring the previous one on exit.

    Usage:
        with create_correlation_context(order_id="123", account_id=1) as cid:
            logger.info("Processing order")  # carries cid
    """
    id_token = _correlation_id.set(correlation_id or generate_correlation_id())
    ctx_token = _correlation_context.set({**(_correlation_context.get() or {}), **context})
    try:
        yield _correlation_id.get()
    finally:
        _correlation_context.reset(ctx_token)
        _correlation_id.reset(id_token)
