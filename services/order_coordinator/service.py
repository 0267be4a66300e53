# Signal fan-out: sizing, resolution, duplicate guard and placement per account
import asyncio
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import structlog

from core.config.settings import DhanSettings
from core.logging import bind_account_context, create_correlation_context
from core.trading.interfaces import AccountConfigProvider, BrokerageGateway
from core.trading.models import (
    AccountOrderResult,
    AccountPolicy,
    OrderOverrides,
    OrderRequest,
    OrderStatus,
    PlacedOrder,
    PlacementSummary,
    PositionCalculation,
    PROTECTIVE_LEG_PRODUCTS,
    RebaseResult,
    SignalType,
    TradingSignal,
)
from core.trading.utils import normalize_ticker
from core.utils.clock import Clock
from core.utils.exceptions import SignalRelayException, ValidationError, create_error_context
from core.utils.ids import generate_correlation_id, generate_order_record_id
from services.instrument_data import IdentifierResolver
from services.order_guard import DuplicateGuard
from services.position_sizing import calculate_position_size, protective_legs
from services.rebase import RebaseScheduler
from .validation import validate_signal

logger = structlog.get_logger(__name__)

AccountSelector = Union[None, int, AccountPolicy, Sequence[Union[int, AccountPolicy]]]

DEFAULT_ORDER_BOOK_SIZE = 1000


class _AccountFailure(Exception):
    """Per-account rejection that is not an error condition (sizing, duplicate)."""

    def __init__(self, message: str, error_type: str,
                 position_calculation: Optional[PositionCalculation] = None):
        super().__init__(message)
        self.error_type = error_type
        self.position_calculation = position_calculation


class OrderCoordinator:
    """
    Places one signal across one or many accounts.

    Each account is handled independently and concurrently; a failure for one
    account is reported in its result and never affects the others.
    """

    def __init__(
        self,
        resolver: IdentifierResolver,
        guard: DuplicateGuard,
        gateway: BrokerageGateway,
        account_provider: AccountConfigProvider,
        scheduler: RebaseScheduler,
        clock: Clock,
        dhan_settings: Optional[DhanSettings] = None,
        order_book_size: int = DEFAULT_ORDER_BOOK_SIZE,
    ):
        self.resolver = resolver
        self.guard = guard
        self.gateway = gateway
        self.account_provider = account_provider
        self.scheduler = scheduler
        self.clock = clock
        self.dhan_settings = dhan_settings or DhanSettings()
        self.order_book_size = order_book_size

        self._orders: List[PlacedOrder] = []
        self.scheduler.add_result_listener(self._on_rebase_result)

    # ------------------------------------------------------------------
    # Placement
    # ------------------------------------------------------------------

    async def place_signal(
        self,
        signal: Union[TradingSignal, Mapping[str, Any]],
        accounts: AccountSelector = None,
        overrides: Optional[OrderOverrides] = None,
    ) -> PlacementSummary:
        """
        Fan a signal out to the selected accounts.

        Args:
            signal: Validated signal or a raw payload to validate
            accounts: None for every active account, an id or policy for a
                single account, or a sequence of either
            overrides: Optional manual quantity, order/product type or legs

        Raises:
            ValidationError: the signal is malformed or carries nothing to place
        """
        if not isinstance(signal, TradingSignal):
            signal = validate_signal(signal)
        if signal.signal == SignalType.HOLD:
            raise ValidationError("HOLD signals do not place orders", field="signal",
                                  value=signal.signal.value)

        overrides = overrides or OrderOverrides()
        ticker = normalize_ticker(signal.ticker)
        policies, missing = await self._select_accounts(accounts)

        log = logger.bind(ticker=ticker, side=signal.signal.value, price=signal.price)
        log.info("Placing signal", accounts=len(policies) + len(missing))

        outcomes = await asyncio.gather(
            *(self._place_for_account(signal, ticker, policy, overrides) for policy in policies),
            return_exceptions=True,
        )

        results: List[AccountOrderResult] = list(missing)
        for policy, outcome in zip(policies, outcomes):
            if isinstance(outcome, AccountOrderResult):
                results.append(outcome)
                continue
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            log.error("Unexpected error placing order", account_id=policy.account_id,
                      error=str(outcome), exc_info=outcome)
            results.append(AccountOrderResult(
                account_id=policy.account_id,
                client_id=policy.client_id,
                success=False,
                error=str(outcome) or type(outcome).__name__,
                error_type=type(outcome).__name__,
            ))

        results.sort(key=lambda r: r.account_id)
        successful = sum(1 for r in results if r.success)
        if successful:
            self.guard.record_order(ticker)

        summary = PlacementSummary(
            ticker=ticker,
            signal=signal.signal,
            total_accounts=len(results),
            successful_orders=successful,
            failed_orders=len(results) - successful,
            results=results,
        )
        log.info("Signal placement completed",
                 total_accounts=summary.total_accounts,
                 successful_orders=summary.successful_orders,
                 failed_orders=summary.failed_orders)
        return summary

    async def _select_accounts(self, accounts: AccountSelector):
        """Returns (policies to place for, failure results for unknown ids)."""
        if accounts is None:
            return await self.account_provider.get_accounts(active_only=True), []

        if isinstance(accounts, (int, AccountPolicy)):
            accounts = [accounts]

        policies: List[AccountPolicy] = []
        missing: List[AccountOrderResult] = []
        for selector in accounts:
            if isinstance(selector, AccountPolicy):
                policies.append(selector)
                continue
            policy = await self.account_provider.get_account(int(selector))
            if policy is None:
                logger.warning("Account not configured", account_id=selector)
                missing.append(AccountOrderResult(
                    account_id=int(selector),
                    client_id="",
                    success=False,
                    error=f"Account {selector} is not configured",
                    error_type="ConfigurationError",
                ))
            else:
                policies.append(policy)
        return policies, missing

    async def _place_for_account(self, signal: TradingSignal, ticker: str,
                                 policy: AccountPolicy, overrides: OrderOverrides) -> AccountOrderResult:
        correlation_id = generate_correlation_id()
        log = bind_account_context(logger, policy.account_id, policy.client_id).bind(
            ticker=ticker, correlation_id=correlation_id)

        with create_correlation_context(correlation_id, ticker=ticker, account_id=policy.account_id):
            calculation: Optional[PositionCalculation] = None
            try:
                security_id = await self.resolver.resolve(ticker)
                quantity, calculation = self._size(signal, policy, overrides)
                if not policy.allow_duplicate_tickers and self.guard.has_ordered_today(ticker):
                    raise _AccountFailure(f"Order for {ticker} already placed today", "DuplicateOrder",
                                          calculation)
            except _AccountFailure as e:
                log.info("Order not placed", reason=str(e), error_type=e.error_type)
                return AccountOrderResult(
                    account_id=policy.account_id,
                    client_id=policy.client_id,
                    success=False,
                    error=str(e),
                    error_type=e.error_type,
                    position_calculation=e.position_calculation,
                )
            except SignalRelayException as e:
                log.warning("Order not placed", **create_error_context(e, "place_order"))
                return AccountOrderResult(
                    account_id=policy.account_id,
                    client_id=policy.client_id,
                    success=False,
                    error=e.message,
                    error_type=type(e).__name__,
                    position_calculation=calculation,
                )

            request = self._build_request(signal, policy, overrides, security_id, quantity,
                                          calculation, correlation_id)
            placement = await self.gateway.place_order(policy, request)

            order = PlacedOrder(
                id=generate_order_record_id(),
                ticker=ticker,
                signal=signal.signal,
                price=signal.price,
                quantity=quantity,
                timestamp=self.clock.now(),
                account_id=policy.account_id,
                client_id=policy.client_id,
                correlation_id=placement.correlation_id,
                status=OrderStatus.PLACED if placement.success else OrderStatus.FAILED,
                order_id=placement.order_id,
                security_id=security_id,
                error=placement.error,
                position_calculation=calculation,
                order_value=quantity * signal.price,
                stop_loss_price=request.stop_loss_price,
                target_price=request.target_price,
            )
            self._store(order)

            if not placement.success:
                log.warning("Order placement failed", error=placement.error,
                            transient=placement.transient)
                return AccountOrderResult(
                    account_id=policy.account_id,
                    client_id=policy.client_id,
                    success=False,
                    order=order,
                    error=placement.error,
                    error_type="GatewayError",
                    position_calculation=calculation,
                )

            log.info("Order placed", order_id=placement.order_id, quantity=quantity)
            if policy.rebase_enabled and request.product_type.upper() in PROTECTIVE_LEG_PRODUCTS:
                self.scheduler.enqueue(placement.order_id, policy, signal.price, signal.signal)

            return AccountOrderResult(
                account_id=policy.account_id,
                client_id=policy.client_id,
                success=True,
                order=order,
                position_calculation=calculation,
            )

    @staticmethod
    def _size(signal: TradingSignal, policy: AccountPolicy, overrides: OrderOverrides):
        if overrides.quantity:
            return overrides.quantity, None
        calculation = calculate_position_size(signal.price, policy, signal.signal)
        if not calculation.can_place_order:
            raise _AccountFailure(calculation.reason or "Position sizing rejected the order",
                                  "SizingRejection", calculation)
        if calculation.final_quantity <= 0:
            raise _AccountFailure(
                f"Single share exceeds max order value ({policy.max_order_value})",
                "SizingRejection", calculation,
            )
        return calculation.final_quantity, calculation

    def _build_request(self, signal: TradingSignal, policy: AccountPolicy, overrides: OrderOverrides,
                       security_id: str, quantity: int,
                       calculation: Optional[PositionCalculation], correlation_id: str) -> OrderRequest:
        order_type = (overrides.order_type or policy.order_type or self.dhan_settings.order_type).upper()
        product_type = (overrides.product_type or policy.product_type or self.dhan_settings.product_type).upper()
        exchange_segment = overrides.exchange_segment or policy.exchange_segment or self.dhan_settings.exchange_segment

        stop_loss = target = None
        if product_type in PROTECTIVE_LEG_PRODUCTS:
            if calculation is not None:
                stop_loss, target = calculation.stop_loss_price, calculation.target_price
            else:
                stop_loss, target = protective_legs(signal.price, signal.signal,
                                                    policy.stop_loss_pct, policy.target_pct)
            stop_loss = overrides.stop_loss_price or stop_loss
            target = overrides.target_price or target

        return OrderRequest(
            client_id=policy.client_id,
            correlation_id=correlation_id,
            transaction_type=signal.signal,
            exchange_segment=exchange_segment,
            product_type=product_type,
            order_type=order_type,
            security_id=security_id,
            quantity=quantity,
            price=0.0 if order_type == "MARKET" else signal.price,
            reference_price=signal.price,
            target_price=target,
            stop_loss_price=stop_loss,
            trailing_jump=policy.min_trail_jump if policy.enable_trailing_stop and stop_loss else None,
        )

    # ------------------------------------------------------------------
    # Order book
    # ------------------------------------------------------------------

    def _store(self, order: PlacedOrder) -> None:
        self._orders.append(order)
        if len(self._orders) > self.order_book_size:
            del self._orders[:-self.order_book_size]

    def _on_rebase_result(self, result: RebaseResult) -> None:
        for index in range(len(self._orders) - 1, -1, -1):
            order = self._orders[index]
            if order.order_id == result.order_id and order.account_id == result.account_id:
                self._orders[index] = order.annotate_rebase(result)
                return

    def orders(self) -> List[PlacedOrder]:
        return list(self._orders)

    def get_order(self, order_id: str) -> Optional[PlacedOrder]:
        for order in reversed(self._orders):
            if order.order_id == order_id:
                return order
        return None

    def orders_by_ticker(self, ticker: str) -> List[PlacedOrder]:
        ticker = normalize_ticker(ticker)
        return [o for o in self._orders if o.ticker == ticker]

    def orders_by_status(self, status: Union[OrderStatus, str]) -> List[PlacedOrder]:
        status = OrderStatus(status)
        return [o for o in self._orders if o.status == status]

    def order_stats(self) -> Dict[str, Any]:
        counts = {status: 0 for status in OrderStatus}
        for order in self._orders:
            counts[order.status] += 1
        placed = [o for o in self._orders if o.status == OrderStatus.PLACED]
        return {
            "total_orders": len(self._orders),
            "pending_orders": counts[OrderStatus.PENDING],
            "placed_orders": counts[OrderStatus.PLACED],
            "failed_orders": counts[OrderStatus.FAILED],
            "cancelled_orders": counts[OrderStatus.CANCELLED],
            "total_quantity": sum(o.quantity for o in placed),
            "total_value": sum(o.order_value for o in placed),
            "unique_tickers": len({o.ticker for o in self._orders}),
        }

    def clear_orders(self) -> None:
        self._orders.clear()
