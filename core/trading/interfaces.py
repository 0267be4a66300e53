from __future__ import annotations

from typing import List, Optional, Protocol, runtime_checkable

from core.trading.models import (
    AccountPolicy,
    AmendResult,
    LegAmendment,
    OrderListResult,
    OrderLookupResult,
    OrderRequest,
    PlaceOrderResult,
)


@runtime_checkable
class BrokerageGateway(Protocol):
    """Order execution client interface for a broker.

    Implementations never raise across this boundary: every failure comes
    back as a result with ``success=False`` and a ``transient`` flag.
    """

    broker: str

    async def place_order(self, policy: AccountPolicy, request: OrderRequest) -> PlaceOrderResult:
        ...

    async def get_order(self, policy: AccountPolicy, order_id: str) -> OrderLookupResult:
        ...

    async def get_orders_by_status(self, policy: AccountPolicy, status: str) -> OrderListResult:
        ...

    async def amend_legs(self, policy: AccountPolicy, order_id: str, amendment: LegAmendment) -> AmendResult:
        ...


@runtime_checkable
class AccountConfigProvider(Protocol):
    """Read-only source of account policies, re-fetched on every call."""

    async def get_accounts(self, active_only: bool = False) -> List[AccountPolicy]:
        ...

    async def get_account(self, account_id: int) -> Optional[AccountPolicy]:
        ...


@runtime_checkable
class InstrumentSource(Protocol):
    """Supplier of the raw delimited instrument feed."""

    async def fetch(self) -> str:
        ...
