from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr


class SignalType(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class OrderStatus(str, Enum):
    PENDING = "pending"
    PLACED = "placed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class BrokerOrderStatus(str, Enum):
    """Order states reported by the exchange via the broker."""
    TRANSIT = "TRANSIT"
    PENDING = "PENDING"
    PART_TRADED = "PART_TRADED"
    TRADED = "TRADED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
    CLOSED = "CLOSED"
    TRIGGERED = "TRIGGERED"

    @classmethod
    def parse(cls, value: Any) -> "BrokerOrderStatus":
        try:
            return cls(str(value).upper())
        except ValueError:
            return cls.PENDING

    @property
    def is_terminal_failure(self) -> bool:
        return self in (BrokerOrderStatus.REJECTED, BrokerOrderStatus.CANCELLED, BrokerOrderStatus.EXPIRED)

    @property
    def is_filled(self) -> bool:
        return self in (BrokerOrderStatus.TRADED, BrokerOrderStatus.CLOSED, BrokerOrderStatus.TRIGGERED)


class LegName(str, Enum):
    ENTRY_LEG = "ENTRY_LEG"
    TARGET_LEG = "TARGET_LEG"
    STOP_LOSS_LEG = "STOP_LOSS_LEG"


# Products that accept attached target/stop-loss legs (super orders)
PROTECTIVE_LEG_PRODUCTS = frozenset({"INTRADAY", "CNC", "MARGIN"})


class TradingSignal(BaseModel):
    """Validated trading instruction that triggers the pipeline"""
    ticker: str
    price: float = Field(gt=0)
    signal: SignalType
    strategy: Optional[str] = None
    timestamp: Optional[datetime] = None
    custom_note: Optional[str] = None


class OrderOverrides(BaseModel):
    """Caller supplied overrides for a single placement"""
    quantity: Optional[int] = Field(default=None, gt=0)
    exchange_segment: Optional[str] = None
    product_type: Optional[str] = None
    order_type: Optional[str] = None
    stop_loss_price: Optional[float] = None
    target_price: Optional[float] = None


class AccountPolicy(BaseModel):
    """Per-account risk, leverage and order-type policy"""
    model_config = ConfigDict(frozen=True)

    account_id: int
    client_id: str
    access_token: SecretStr = SecretStr("")
    available_funds: float = 20000.0
    leverage: float = 2.0
    max_position_size: float = 0.1
    min_order_value: float = 1000.0
    max_order_value: float = 5000.0
    stop_loss_pct: float = 0.01
    target_pct: float = 0.015
    risk_on_capital: float = 1.0
    enable_trailing_stop: bool = False
    min_trail_jump: float = 0.05
    rebase_enabled: bool = True
    rebase_threshold_pct: float = 0.1  # percent, 0.1 == 0.1%
    allow_duplicate_tickers: bool = False
    order_type: str = "MARKET"
    product_type: str = "INTRADAY"
    exchange_segment: str = "NSE_EQ"
    is_active: bool = True

    @property
    def supports_protective_legs(self) -> bool:
        return self.product_type.upper() in PROTECTIVE_LEG_PRODUCTS


class PositionCalculation(BaseModel):
    """Derived result of sizing one (price, policy) pair"""
    stock_price: float
    available_funds: float
    leverage: float
    calculated_quantity: int
    risk_on_capital: float
    final_quantity: int
    order_value: float
    leveraged_value: float
    position_size_pct: float
    can_place_order: bool
    reason: Optional[str] = None
    stop_loss_price: Optional[float] = None
    target_price: Optional[float] = None
    account_id: Optional[int] = None
    client_id: Optional[str] = None


class OrderRequest(BaseModel):
    """Normalized placement request handed to the brokerage gateway"""
    client_id: str
    correlation_id: str
    transaction_type: SignalType
    exchange_segment: str
    product_type: str
    order_type: str
    security_id: str
    quantity: int
    price: float  # 0 for MARKET orders
    reference_price: Optional[float] = None  # signal price, never sent to the broker
    target_price: Optional[float] = None
    stop_loss_price: Optional[float] = None
    trailing_jump: Optional[float] = None


class PlaceOrderResult(BaseModel):
    success: bool
    correlation_id: str
    order_id: Optional[str] = None
    order_status: Optional[str] = None
    error: Optional[str] = None
    transient: bool = False


class OrderLeg(BaseModel):
    leg_name: LegName
    price: Optional[float] = None
    status: Optional[str] = None
    trailing_jump: Optional[float] = None


class OrderDetails(BaseModel):
    """Normalized order state returned by the gateway"""
    order_id: str
    status: BrokerOrderStatus
    transaction_type: SignalType = SignalType.BUY
    security_id: Optional[str] = None
    trading_symbol: Optional[str] = None
    quantity: int = 0
    price: Optional[float] = None
    filled_price: Optional[float] = None
    stop_loss_price: Optional[float] = None
    target_price: Optional[float] = None
    legs: List[OrderLeg] = Field(default_factory=list)

    @property
    def has_pending_legs(self) -> bool:
        return any(
            leg.leg_name != LegName.ENTRY_LEG and str(leg.status or "").upper() == "PENDING"
            for leg in self.legs
        )


class OrderLookupResult(BaseModel):
    success: bool
    order: Optional[OrderDetails] = None
    error: Optional[str] = None
    transient: bool = True


class OrderListResult(BaseModel):
    success: bool
    orders: List[OrderDetails] = Field(default_factory=list)
    error: Optional[str] = None
    transient: bool = True


class LegAmendment(BaseModel):
    stop_loss: Optional[float] = None
    target: Optional[float] = None
    trailing_jump: Optional[float] = None


class AmendResult(BaseModel):
    success: bool
    error: Optional[str] = None
    transient: bool = True


class PlacedOrder(BaseModel):
    """Record of one (signal, account) placement"""
    model_config = ConfigDict(frozen=True)

    id: str
    ticker: str
    signal: SignalType
    price: float
    quantity: int
    timestamp: datetime
    account_id: int
    client_id: str
    correlation_id: str
    status: OrderStatus
    order_id: Optional[str] = None
    security_id: Optional[str] = None
    error: Optional[str] = None
    position_calculation: Optional[PositionCalculation] = None
    order_value: float = 0.0
    stop_loss_price: Optional[float] = None
    target_price: Optional[float] = None
    rebased_stop_loss_price: Optional[float] = None
    rebased_target_price: Optional[float] = None
    fill_price: Optional[float] = None

    def annotate_rebase(self, result: "RebaseResult") -> "PlacedOrder":
        """Return a copy carrying rebase data; original legs stay untouched."""
        data = result.rebased_data
        if not result.success or data is None:
            return self
        return self.model_copy(update={
            "rebased_stop_loss_price": data.new_sl,
            "rebased_target_price": data.new_tp,
            "fill_price": data.actual_entry_price,
        })


class AccountOrderResult(BaseModel):
    """Outcome for one account in a fan-out"""
    account_id: int
    client_id: str
    success: bool
    order: Optional[PlacedOrder] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    position_calculation: Optional[PositionCalculation] = None


class PlacementSummary(BaseModel):
    ticker: str
    signal: SignalType
    total_accounts: int
    successful_orders: int
    failed_orders: int
    results: List[AccountOrderResult] = Field(default_factory=list)


class RebaseState(str, Enum):
    QUEUED = "queued"
    WAITING_INITIAL_DELAY = "waiting_initial_delay"
    ATTEMPTING = "attempting"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    TERMINALLY_FAILED = "terminally_failed"
    EXHAUSTED = "exhausted"


class RebasedData(BaseModel):
    original_tp: Optional[float] = None
    original_sl: Optional[float] = None
    new_tp: Optional[float] = None
    new_sl: Optional[float] = None
    actual_entry_price: Optional[float] = None


class RebaseResult(BaseModel):
    """Append-only record of one reconciliation outcome"""
    order_id: str
    account_id: int
    client_id: str
    success: bool
    attempts: int = 0
    message: Optional[str] = None
    error: Optional[str] = None
    terminal: bool = False
    rebased_data: Optional[RebasedData] = None
    recorded_at: Optional[datetime] = None


class QueueStatus(BaseModel):
    queue_length: int
    is_processing: bool
    results_count: int
    rebased_orders_count: int


@dataclass
class RebaseQueueItem:
    """Work item owned by the rebase scheduler."""

    order_id: str
    policy: AccountPolicy
    signal_price: float
    side: SignalType
    max_attempts: int
    added_at: float
    attempts: int = 0
    last_attempt_at: Optional[float] = None
    state: RebaseState = RebaseState.QUEUED
    history: List[RebaseState] = field(default_factory=list)

    def transition(self, state: RebaseState) -> None:
        self.history.append(self.state)
        self.state = state

    def context(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "account_id": self.policy.account_id,
            "client_id": self.policy.client_id,
            "attempt": self.attempts,
            "max_attempts": self.max_attempts,
        }
