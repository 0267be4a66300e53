# Account policy providers
import os
from typing import Dict, Iterable, List, Mapping, Optional

import structlog

from core.config.settings import DhanSettings
from core.trading.models import AccountPolicy
from core.utils.exceptions import ConfigurationError

logger = structlog.get_logger(__name__)

MAX_NUMBERED_ACCOUNTS = 5

_TRUE_VALUES = {"1", "true", "yes", "on"}


class EnvAccountConfigProvider:
    """
    Loads account policies from environment variables on every call.

    Numbered accounts use ``DHAN_ACCESS_TOKEN_<i>`` and ``DHAN_CLIENT_ID_<i>``
    (i = 1..5) plus optional suffixed policy variables such as
    ``AVAILABLE_FUNDS_<i>``. When no numbered account is configured the
    un-suffixed variables describe a single legacy account with id 1.
    """

    def __init__(self, environ: Optional[Mapping[str, str]] = None,
                 dhan_settings: Optional[DhanSettings] = None,
                 max_accounts: int = MAX_NUMBERED_ACCOUNTS):
        self._environ = environ
        self.dhan_settings = dhan_settings or DhanSettings()
        self.max_accounts = max_accounts

    @property
    def environ(self) -> Mapping[str, str]:
        return self._environ if self._environ is not None else os.environ

    def _float(self, name: str, default: float) -> float:
        raw = self.environ.get(name)
        if raw is None or raw.strip() == "":
            return default
        try:
            return float(raw)
        except ValueError as e:
            raise ConfigurationError(
                f"{name} must be a number", config_field=name, config_value=raw
            ) from e

    def _bool(self, name: str, default: bool) -> bool:
        raw = self.environ.get(name)
        if raw is None or raw.strip() == "":
            return default
        return raw.strip().lower() in _TRUE_VALUES

    def _build(self, account_id: int, suffix: str) -> Optional[AccountPolicy]:
        env = self.environ
        access_token = env.get(f"DHAN_ACCESS_TOKEN{suffix}")
        client_id = env.get(f"DHAN_CLIENT_ID{suffix}")
        if not access_token or not client_id:
            return None

        return AccountPolicy(
            account_id=account_id,
            client_id=client_id,
            access_token=access_token,
            available_funds=self._float(f"AVAILABLE_FUNDS{suffix}", 20000.0),
            leverage=self._float(f"LEVERAGE{suffix}", 2.0),
            max_position_size=self._float(f"MAX_POSITION_SIZE{suffix}", 0.1),
            min_order_value=self._float(f"MIN_ORDER_VALUE{suffix}", 1000.0),
            max_order_value=self._float(f"MAX_ORDER_VALUE{suffix}", 5000.0),
            stop_loss_pct=self._float(f"STOP_LOSS_PERCENTAGE{suffix}", 0.01),
            target_pct=self._float(f"TARGET_PRICE_PERCENTAGE{suffix}", 0.015),
            risk_on_capital=self._float(f"RISK_ON_CAPITAL{suffix}", 1.0),
            enable_trailing_stop=self._bool(f"ENABLE_TRAILING_STOP_LOSS{suffix}", False),
            min_trail_jump=self._float(f"MIN_TRAIL_JUMP{suffix}", 0.05),
            allow_duplicate_tickers=self._bool(f"ALLOW_DUPLICATE_TICKERS{suffix}", False),
            rebase_enabled=self._bool("REBASE_TP_AND_SL", True),
            rebase_threshold_pct=self._float("REBASE_THRESHOLD_PERCENTAGE", 0.1),
            order_type=env.get("DHAN_ORDER_TYPE") or self.dhan_settings.order_type,
            product_type=env.get("DHAN_PRODUCT_TYPE") or self.dhan_settings.product_type,
            exchange_segment=env.get("DHAN_EXCHANGE_SEGMENT") or self.dhan_settings.exchange_segment,
            is_active=True,
        )

    def load(self) -> List[AccountPolicy]:
        accounts = []
        for i in range(1, self.max_accounts + 1):
            policy = self._build(i, f"_{i}")
            if policy is not None:
                accounts.append(policy)

        if not accounts:
            legacy = self._build(1, "")
            if legacy is not None:
                logger.debug("Using legacy single-account configuration")
                accounts.append(legacy)

        return accounts

    async def get_accounts(self, active_only: bool = False) -> List[AccountPolicy]:
        accounts = self.load()
        if active_only:
            return [a for a in accounts if a.is_active]
        return accounts

    async def get_account(self, account_id: int) -> Optional[AccountPolicy]:
        for account in self.load():
            if account.account_id == account_id:
                return account
        return None

    async def get_account_by_client_id(self, client_id: str) -> Optional[AccountPolicy]:
        for account in self.load():
            if account.client_id == client_id:
                return account
        return None


class StaticAccountConfigProvider:
    """Fixed in-memory set of policies."""

    def __init__(self, accounts: Iterable[AccountPolicy] = ()):
        self._accounts: Dict[int, AccountPolicy] = {a.account_id: a for a in accounts}

    def set_account(self, policy: AccountPolicy) -> None:
        self._accounts[policy.account_id] = policy

    async def get_accounts(self, active_only: bool = False) -> List[AccountPolicy]:
        accounts = sorted(self._accounts.values(), key=lambda a: a.account_id)
        if active_only:
            return [a for a in accounts if a.is_active]
        return accounts

    async def get_account(self, account_id: int) -> Optional[AccountPolicy]:
        return self._accounts.get(account_id)
