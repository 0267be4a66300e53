"""
Order coordination: validates a signal and fans it out across accounts.
"""

from .service import OrderCoordinator
from .validation import validate_signal

__all__ = ["OrderCoordinator", "validate_signal"]
