"""
Account policy validation.

Checks every configured account against the allowed ranges and reports
errors as readable strings rather than raising, so an operator sees every
problem at once.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from core.trading.models import AccountPolicy

TRAIL_JUMP_STEP = 0.05


@dataclass
class AccountValidationResult:
    """Result of validating one or more account policies"""
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    account_errors: Dict[int, List[str]] = field(default_factory=dict)


def _is_step_multiple(value: float, step: float) -> bool:
    ratio = value / step
    return abs(ratio - round(ratio)) < 1e-6


def validate_account_policy(account: AccountPolicy) -> AccountValidationResult:
    prefix = f"Account {account.account_id}"
    errors: List[str] = []

    if not account.access_token.get_secret_value().strip():
        errors.append(f"{prefix}: Access token is required")
    if not account.client_id.strip():
        errors.append(f"{prefix}: Client ID is required")
    if account.available_funds <= 0:
        errors.append(f"{prefix}: Available funds must be greater than 0")
    if account.leverage < 1 or account.leverage > 10:
        errors.append(f"{prefix}: Leverage must be between 1x and 10x")
    if account.max_position_size <= 0 or account.max_position_size > 1:
        errors.append(f"{prefix}: Max position size must be between 0% and 100%")
    if account.min_order_value <= 0:
        errors.append(f"{prefix}: Minimum order value must be greater than 0")
    if account.max_order_value <= account.min_order_value:
        errors.append(f"{prefix}: Maximum order value must be greater than minimum order value")
    if account.stop_loss_pct <= 0 or account.stop_loss_pct > 0.5:
        errors.append(f"{prefix}: Stop loss percentage must be between 0% and 50%")
    if account.target_pct <= 0 or account.target_pct > 1:
        errors.append(f"{prefix}: Target price percentage must be between 0% and 100%")
    if account.risk_on_capital <= 0 or account.risk_on_capital > 5:
        errors.append(f"{prefix}: Risk on capital must be between 0% and 500%")
    if account.min_trail_jump < TRAIL_JUMP_STEP or account.min_trail_jump > 10:
        errors.append(f"{prefix}: Minimum trail jump must be between 0.05 and 10")
    elif not _is_step_multiple(account.min_trail_jump, TRAIL_JUMP_STEP):
        errors.append(f"{prefix}: Minimum trail jump must be a multiple of 0.05")
    if account.rebase_threshold_pct < 0:
        errors.append(f"{prefix}: Rebase threshold must not be negative")

    return AccountValidationResult(
        is_valid=not errors,
        errors=errors,
        account_errors={account.account_id: errors} if errors else {},
    )


def validate_all_accounts(accounts: Sequence[AccountPolicy]) -> AccountValidationResult:
    if not accounts:
        return AccountValidationResult(
            is_valid=False,
            errors=["No Dhan accounts configured. Set DHAN_ACCESS_TOKEN_1 and DHAN_CLIENT_ID_1 at minimum."],
        )

    result = AccountValidationResult(is_valid=True)
    for account in accounts:
        single = validate_account_policy(account)
        if not single.is_valid:
            result.is_valid = False
            result.errors.extend(single.errors)
            result.account_errors.update(single.account_errors)
    return result


def get_configuration_summary(accounts: Sequence[AccountPolicy]) -> Dict[str, Any]:
    """Totals across accounts plus a per-account line; never includes tokens."""
    rows = [
        {
            "account_id": a.account_id,
            "client_id": a.client_id,
            "available_funds": a.available_funds,
            "leverage": a.leverage,
            "leveraged_funds": a.available_funds * a.leverage,
            "is_active": a.is_active,
            "rebase_enabled": a.rebase_enabled,
            "allow_duplicate_tickers": a.allow_duplicate_tickers,
        }
        for a in accounts
    ]
    return {
        "total_accounts": len(rows),
        "active_accounts": sum(1 for a in accounts if a.is_active),
        "total_available_funds": sum(r["available_funds"] for r in rows),
        "total_leveraged_funds": sum(r["leveraged_funds"] for r in rows),
        "accounts": rows,
    }
