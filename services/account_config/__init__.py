"""
Account policy sources and validation.
"""

from .provider import EnvAccountConfigProvider, StaticAccountConfigProvider
from .validation import (
    AccountValidationResult,
    get_configuration_summary,
    validate_account_policy,
    validate_all_accounts,
)

__all__ = [
    "EnvAccountConfigProvider",
    "StaticAccountConfigProvider",
    "AccountValidationResult",
    "validate_account_policy",
    "validate_all_accounts",
    "get_configuration_summary",
]
