import random
import uuid
from typing import Dict, Optional

import structlog

from core.config.settings import PaperTradingSettings
from core.trading.models import (
    AccountPolicy,
    AmendResult,
    BrokerOrderStatus,
    LegAmendment,
    LegName,
    OrderDetails,
    OrderLeg,
    OrderListResult,
    OrderLookupResult,
    OrderRequest,
    PlaceOrderResult,
    SignalType,
)
from core.trading.utils import round2

logger = structlog.get_logger(__name__)


class PaperGateway:
    """
    Simulated brokerage gateway.

    Market orders fill immediately at the reference price moved against the
    trader by a random slippage; limit orders fill at their limit. Protective
    legs stay PENDING until amended or the order is cancelled. State lives in
    memory per instance.
    """

    broker = "paper"

    def __init__(self, settings: Optional[PaperTradingSettings] = None,
                 rng: Optional[random.Random] = None):
        self.settings = settings or PaperTradingSettings()
        self._rng = rng or random.Random()
        self._orders: Dict[str, OrderDetails] = {}
        self._owners: Dict[str, int] = {}

    def _fill_price(self, request: OrderRequest) -> Optional[float]:
        if request.order_type.upper() != "MARKET" and request.price > 0:
            return request.price
        last_price = request.reference_price or request.price
        if not last_price or last_price <= 0:
            return None
        slippage_pct = self.settings.slippage_percent / 100
        direction = 1 if request.transaction_type == SignalType.BUY else -1
        slippage_amount = last_price * slippage_pct * self._rng.uniform(0.5, 1.5)
        return round2(last_price + direction * slippage_amount)

    async def place_order(self, policy: AccountPolicy, request: OrderRequest) -> PlaceOrderResult:
        fill_price = self._fill_price(request)
        if fill_price is None:
            return PlaceOrderResult(
                success=False,
                correlation_id=request.correlation_id,
                error="Paper gateway needs a reference price for market orders",
            )

        order_id = f"paper_{uuid.uuid4().hex[:12]}"
        legs = [OrderLeg(leg_name=LegName.ENTRY_LEG, price=fill_price, status=BrokerOrderStatus.TRADED.value)]
        if request.target_price is not None:
            legs.append(OrderLeg(leg_name=LegName.TARGET_LEG, price=request.target_price,
                                 status=BrokerOrderStatus.PENDING.value))
        if request.stop_loss_price is not None:
            legs.append(OrderLeg(leg_name=LegName.STOP_LOSS_LEG, price=request.stop_loss_price,
                                 status=BrokerOrderStatus.PENDING.value,
                                 trailing_jump=request.trailing_jump))

        self._orders[order_id] = OrderDetails(
            order_id=order_id,
            status=BrokerOrderStatus.TRADED,
            transaction_type=request.transaction_type,
            security_id=request.security_id,
            quantity=request.quantity,
            price=request.price,
            filled_price=fill_price,
            stop_loss_price=request.stop_loss_price,
            target_price=request.target_price,
            legs=legs,
        )
        self._owners[order_id] = policy.account_id

        logger.info("PAPER ORDER (SIMULATED)",
                    order_id=order_id,
                    account_id=policy.account_id,
                    side=request.transaction_type.value,
                    quantity=request.quantity,
                    fill_price=fill_price,
                    correlation_id=request.correlation_id)
        return PlaceOrderResult(
            success=True,
            correlation_id=request.correlation_id,
            order_id=order_id,
            order_status=BrokerOrderStatus.TRADED.value,
        )

    def _owned(self, policy: AccountPolicy, order_id: str) -> Optional[OrderDetails]:
        if self._owners.get(order_id) != policy.account_id:
            return None
        return self._orders.get(order_id)

    async def get_order(self, policy: AccountPolicy, order_id: str) -> OrderLookupResult:
        order = self._owned(policy, order_id)
        if order is None:
            return OrderLookupResult(success=False, error=f"Order {order_id} not found", transient=False)
        return OrderLookupResult(success=True, order=order)

    async def get_orders_by_status(self, policy: AccountPolicy, status: str) -> OrderListResult:
        wanted = BrokerOrderStatus.parse(status)
        orders = [
            order for order_id, order in self._orders.items()
            if self._owners.get(order_id) == policy.account_id and order.status == wanted
        ]
        return OrderListResult(success=True, orders=orders)

    async def amend_legs(self, policy: AccountPolicy, order_id: str, amendment: LegAmendment) -> AmendResult:
        order = self._owned(policy, order_id)
        if order is None:
            return AmendResult(success=False, error=f"Order {order_id} not found", transient=False)
        if order.status.is_terminal_failure:
            return AmendResult(success=False, error=f"Order {order_id} is {order.status.value}", transient=False)

        legs = []
        for leg in order.legs:
            if leg.leg_name == LegName.TARGET_LEG and amendment.target is not None:
                leg = leg.model_copy(update={"price": amendment.target})
            elif leg.leg_name == LegName.STOP_LOSS_LEG and amendment.stop_loss is not None:
                leg = leg.model_copy(update={
                    "price": amendment.stop_loss,
                    "trailing_jump": amendment.trailing_jump or leg.trailing_jump,
                })
            legs.append(leg)

        self._orders[order_id] = order.model_copy(update={
            "legs": legs,
            "target_price": amendment.target if amendment.target is not None else order.target_price,
            "stop_loss_price": amendment.stop_loss if amendment.stop_loss is not None else order.stop_loss_price,
        })
        logger.info("PAPER LEGS AMENDED", order_id=order_id,
                    target=amendment.target, stop_loss=amendment.stop_loss)
        return AmendResult(success=True)

    def set_status(self, order_id: str, status: BrokerOrderStatus) -> None:
        """Force an order into a status, e.g. to simulate an exchange rejection."""
        order = self._orders[order_id]
        self._orders[order_id] = order.model_copy(update={"status": status})
