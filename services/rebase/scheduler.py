"""
Protective leg rebasing.

After an order fills, its stop-loss and target were computed from the
signal price rather than the fill price. The scheduler polls each placed
order, recomputes the legs from the actual fill and amends them.

Queue items are processed strictly one at a time by a single consumer task.
A transient failure puts the item back at the head of the queue after a
fixed delay; a terminal failure (order rejected, cancelled or expired) is
recorded and dropped. Every outcome is appended to a result log that is
never rewritten.
"""

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Iterable, List, Optional, Set

import structlog

from core.config.settings import RebaseSettings
from core.trading.interfaces import BrokerageGateway
from core.trading.models import (
    AccountPolicy,
    BrokerOrderStatus,
    LegAmendment,
    OrderDetails,
    QueueStatus,
    RebasedData,
    RebaseQueueItem,
    RebaseResult,
    RebaseState,
    SignalType,
)
from core.trading.utils import price_deviation_pct
from core.utils.clock import Clock
from core.utils.exceptions import TerminalOrderFailure, create_error_context
from services.position_sizing import protective_legs

logger = structlog.get_logger(__name__)

ResultListener = Callable[[RebaseResult], None]


@dataclass
class AttemptOutcome:
    success: bool
    terminal: bool = False
    message: Optional[str] = None
    error: Optional[str] = None
    rebased_data: Optional[RebasedData] = None


class RebaseScheduler:
    """Serial, retrying reconciler of protective legs."""

    def __init__(self, gateway: BrokerageGateway, clock: Clock,
                 settings: Optional[RebaseSettings] = None):
        self.gateway = gateway
        self.clock = clock
        self.settings = settings or RebaseSettings()

        self._queue: Deque[RebaseQueueItem] = deque()
        self._results: List[RebaseResult] = []
        self._rebased_order_ids: Set[str] = set()
        self._listeners: List[ResultListener] = []
        self._worker: Optional[asyncio.Task] = None
        self._processing = False

    # ------------------------------------------------------------------
    # Queue mode
    # ------------------------------------------------------------------

    def add_result_listener(self, listener: ResultListener) -> None:
        """Register a callback invoked for every appended result."""
        self._listeners.append(listener)

    def is_order_rebased(self, order_id: str) -> bool:
        return order_id in self._rebased_order_ids

    def enqueue(self, order_id: str, policy: AccountPolicy, signal_price: float,
                side: SignalType = SignalType.BUY) -> bool:
        """
        Queue an order for rebasing and start the consumer if idle.

        Must be called from within the running event loop.

        Returns:
            True if the order was queued
        """
        log = logger.bind(order_id=order_id, account_id=policy.account_id)

        if not policy.rebase_enabled:
            log.debug("Rebase disabled for account, not queueing")
            return False

        if order_id in self._rebased_order_ids:
            log.info("Order already rebased in this session, skipping")
            self._record(RebaseResult(
                order_id=order_id,
                account_id=policy.account_id,
                client_id=policy.client_id,
                success=True,
                attempts=0,
                message="Already rebased in this session (skipped duplicate)",
            ))
            return False

        if any(item.order_id == order_id for item in self._queue):
            log.debug("Order already queued for rebase")
            return False

        item = RebaseQueueItem(
            order_id=order_id,
            policy=policy,
            signal_price=signal_price,
            side=side,
            max_attempts=self.settings.max_attempts,
            added_at=self.clock.monotonic(),
        )
        self._queue.append(item)
        log.info("Order queued for rebase", queue_length=len(self._queue),
                 max_attempts=item.max_attempts)
        self._ensure_worker()
        return True

    def _ensure_worker(self) -> None:
        if self._worker is not None and not self._worker.done():
            return
        self._worker = asyncio.get_running_loop().create_task(self._run())
        self._worker.add_done_callback(self._on_worker_done)

    @staticmethod
    def _on_worker_done(task: asyncio.Task) -> None:
        if task.cancelled():
            logger.warning("Rebase worker cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.error("Rebase worker crashed", error=str(error), exc_info=error)

    async def _run(self) -> None:
        self._processing = True
        logger.info("Rebase queue processing started", queue_length=len(self._queue))
        try:
            while self._queue:
                item = self._queue.popleft()
                try:
                    await self._process_item(item)
                except Exception as e:
                    logger.error("Unexpected error processing rebase item",
                                 error=str(e), exc_info=True, **item.context())
                    item.transition(RebaseState.EXHAUSTED)
                    self._record(self._result_for_item(
                        item, AttemptOutcome(success=False, error=f"Unexpected error during rebase: {e}")
                    ))

                if self._queue:
                    await self.clock.sleep(self.settings.inter_item_delay_seconds)
        finally:
            self._processing = False
            logger.info("Rebase queue processing completed", results=len(self._results))

    async def _process_item(self, item: RebaseQueueItem) -> None:
        log = logger.bind(**item.context())

        if item.attempts == 0:
            item.transition(RebaseState.WAITING_INITIAL_DELAY)
            log.debug("Waiting before first rebase attempt",
                      delay_seconds=self.settings.initial_delay_seconds)
            await self.clock.sleep(self.settings.initial_delay_seconds)

        item.attempts += 1
        item.last_attempt_at = self.clock.monotonic()
        item.transition(RebaseState.ATTEMPTING)
        log = logger.bind(**item.context())

        if item.order_id in self._rebased_order_ids:
            item.transition(RebaseState.SUCCEEDED)
            self._record(self._result_for_item(item, AttemptOutcome(
                success=True, message="Already rebased in this session (skipped duplicate)",
            )))
            return

        try:
            outcome = await self._attempt(item)
        except Exception as e:
            log.warning("Exception during rebase attempt", error=str(e), exc_info=True)
            outcome = AttemptOutcome(success=False, error=f"Unexpected error during rebase: {e}")

        if outcome.success:
            item.transition(RebaseState.SUCCEEDED)
            self._rebased_order_ids.add(item.order_id)
            log.info("Rebase successful", message=outcome.message)
            self._record(self._result_for_item(item, outcome))
        elif outcome.terminal:
            item.transition(RebaseState.TERMINALLY_FAILED)
            log.error("Terminal rebase failure, not retrying", error=outcome.error)
            self._record(self._result_for_item(item, outcome))
        elif item.attempts < item.max_attempts:
            item.transition(RebaseState.RETRYING)
            log.warning("Rebase attempt failed, retrying", error=outcome.error,
                        retry_delay_seconds=self.settings.retry_delay_seconds)
            await self.clock.sleep(self.settings.retry_delay_seconds)
            self._queue.appendleft(item)
        else:
            item.transition(RebaseState.EXHAUSTED)
            log.error("Rebase failed after max attempts", error=outcome.error)
            self._record(self._result_for_item(item, outcome))

    async def _attempt(self, item: RebaseQueueItem) -> AttemptOutcome:
        lookup = await self.gateway.get_order(item.policy, item.order_id)
        if not lookup.success or lookup.order is None:
            return AttemptOutcome(
                success=False,
                terminal=not lookup.transient,
                error=lookup.error or "Failed to fetch order details",
            )

        order = lookup.order
        if order.status.is_terminal_failure:
            failure = TerminalOrderFailure(
                f"Order {item.order_id} is {order.status.value}",
                order_id=item.order_id, order_status=order.status.value,
            )
            logger.warning("Order cannot be rebased", **{**item.context(), **create_error_context(failure, "rebase")})
            return AttemptOutcome(success=False, terminal=True, error=failure.message)

        filled = order.status.is_filled or (
            order.status == BrokerOrderStatus.PART_TRADED and order.filled_price is not None
        )
        if not filled or not order.filled_price:
            return AttemptOutcome(
                success=False,
                error=f"Order not filled yet (status {order.status.value})",
            )

        deviation = price_deviation_pct(item.signal_price, order.filled_price)
        if deviation < item.policy.rebase_threshold_pct:
            return AttemptOutcome(
                success=True,
                message=(f"Price difference ({deviation:.2f}%) below threshold "
                         f"({item.policy.rebase_threshold_pct}%), no rebase needed"),
                rebased_data=RebasedData(
                    actual_entry_price=order.filled_price,
                    original_tp=order.target_price,
                    original_sl=order.stop_loss_price,
                ),
            )

        return await self._amend(item.policy, order, order.filled_price, item.side)

    async def _amend(self, policy: AccountPolicy, order: OrderDetails,
                     entry_price: float, side: SignalType) -> AttemptOutcome:
        new_sl, new_tp = protective_legs(entry_price, side, policy.stop_loss_pct, policy.target_pct)

        has_sl = order.stop_loss_price is not None
        has_tp = order.target_price is not None
        if not has_sl and not has_tp:
            # Leg prices unknown from this lookup, amend both
            has_sl = has_tp = True

        amendment = LegAmendment(
            stop_loss=new_sl if has_sl else None,
            target=new_tp if has_tp else None,
            trailing_jump=policy.min_trail_jump if policy.enable_trailing_stop else None,
        )
        data = RebasedData(
            original_tp=order.target_price,
            original_sl=order.stop_loss_price,
            new_tp=amendment.target,
            new_sl=amendment.stop_loss,
            actual_entry_price=entry_price,
        )

        result = await self.gateway.amend_legs(policy, order.order_id, amendment)
        if result.success:
            return AttemptOutcome(
                success=True,
                message="TP/SL rebased successfully based on actual entry price",
                rebased_data=data,
            )
        return AttemptOutcome(
            success=False,
            terminal=not result.transient,
            error=result.error or "Leg amendment failed",
            rebased_data=data,
        )

    def _result_for_item(self, item: RebaseQueueItem, outcome: AttemptOutcome) -> RebaseResult:
        return RebaseResult(
            order_id=item.order_id,
            account_id=item.policy.account_id,
            client_id=item.policy.client_id,
            success=outcome.success,
            attempts=item.attempts,
            message=outcome.message,
            error=outcome.error,
            terminal=outcome.terminal,
            rebased_data=outcome.rebased_data,
        )

    def _record(self, result: RebaseResult) -> None:
        result = result.model_copy(update={"recorded_at": self.clock.now()})
        self._results.append(result)
        for listener in self._listeners:
            listener(result)

    # ------------------------------------------------------------------
    # Bulk mode
    # ------------------------------------------------------------------

    def _needs_rebase(self, policy: AccountPolicy, order: OrderDetails) -> bool:
        entry = order.filled_price or order.price
        if not entry:
            return False
        expected_sl, expected_tp = protective_legs(
            entry, order.transaction_type, policy.stop_loss_pct, policy.target_pct
        )
        deviations = []
        if order.stop_loss_price:
            deviations.append(price_deviation_pct(expected_sl, order.stop_loss_price))
        if order.target_price:
            deviations.append(price_deviation_pct(expected_tp, order.target_price))
        return bool(deviations) and max(deviations) >= policy.rebase_threshold_pct

    async def process_account_orders(self, policy: AccountPolicy) -> List[RebaseResult]:
        """
        Rebase every traded order of one account whose legs drifted.

        Fetches the account's traded super orders in a single call, keeps
        those with pending legs whose leg prices deviate from the fill based
        legs by at least the threshold, and amends them one by one.
        """
        log = logger.bind(account_id=policy.account_id, client_id=policy.client_id)
        if not policy.rebase_enabled:
            log.info("Skipping account, rebasing disabled")
            return []

        listing = await self.gateway.get_orders_by_status(policy, BrokerOrderStatus.TRADED.value)
        if not listing.success:
            log.error("Failed to fetch orders for bulk rebase", error=listing.error)
            return []

        candidates = [o for o in listing.orders if o.has_pending_legs]
        needing = [o for o in candidates if self._needs_rebase(policy, o)]
        log.info("Bulk rebase scan", traded_with_pending_legs=len(candidates),
                 needing_rebase=len(needing))

        results: List[RebaseResult] = []
        for index, order in enumerate(needing):
            if order.order_id in self._rebased_order_ids:
                result = RebaseResult(
                    order_id=order.order_id,
                    account_id=policy.account_id,
                    client_id=policy.client_id,
                    success=True,
                    message="Already rebased in this session (skipped duplicate)",
                )
            else:
                entry = order.filled_price or order.price
                outcome = await self._amend(policy, order, entry, order.transaction_type)
                if outcome.success:
                    self._rebased_order_ids.add(order.order_id)
                result = RebaseResult(
                    order_id=order.order_id,
                    account_id=policy.account_id,
                    client_id=policy.client_id,
                    success=outcome.success,
                    attempts=1,
                    message=outcome.message,
                    error=outcome.error,
                    terminal=outcome.terminal,
                    rebased_data=outcome.rebased_data,
                )
                if index < len(needing) - 1:
                    await self.clock.sleep(self.settings.inter_item_delay_seconds)

            self._record(result)
            results.append(self._results[-1])

        log.info("Bulk rebase completed",
                 successful=sum(1 for r in results if r.success), total=len(results))
        return results

    async def process_all_accounts(self, policies: Iterable[AccountPolicy]) -> Dict[int, List[RebaseResult]]:
        results_by_account: Dict[int, List[RebaseResult]] = {}
        policies = [p for p in policies if p.rebase_enabled]
        for index, policy in enumerate(policies):
            results_by_account[policy.account_id] = await self.process_account_orders(policy)
            if index < len(policies) - 1:
                await self.clock.sleep(self.settings.inter_account_delay_seconds)
        return results_by_account

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def results(self) -> List[RebaseResult]:
        return list(self._results)

    def results_for(self, order_id: str) -> List[RebaseResult]:
        return [r for r in self._results if r.order_id == order_id]

    def result_for(self, order_id: str) -> Optional[RebaseResult]:
        """Latest result recorded for an order."""
        matches = self.results_for(order_id)
        return matches[-1] if matches else None

    @property
    def is_processing(self) -> bool:
        return self._processing

    def get_queue_status(self) -> QueueStatus:
        return QueueStatus(
            queue_length=len(self._queue),
            is_processing=self._processing,
            results_count=len(self._results),
            rebased_orders_count=len(self._rebased_order_ids),
        )

    async def wait_for_completion(self, timeout: Optional[float] = None) -> List[RebaseResult]:
        """
        Wait for the queue to drain, at most ``timeout`` seconds.

        The consumer is never cancelled; on timeout the results appended so
        far are returned and processing continues in the background.
        """
        timeout = self.settings.completion_timeout_seconds if timeout is None else timeout
        worker = self._worker
        if worker is not None and not worker.done():
            done, _ = await asyncio.wait({worker}, timeout=timeout)
            if not done:
                logger.warning("Timeout waiting for rebase completion",
                               timeout_seconds=timeout, queue_length=len(self._queue))
        return self.results()

    def reset_idempotency(self) -> int:
        """Forget which orders were rebased; returns how many were tracked."""
        count = len(self._rebased_order_ids)
        self._rebased_order_ids.clear()
        logger.info("Cleared rebased orders tracking", cleared=count)
        return count

    async def shutdown(self) -> None:
        """Cancel the consumer task, if any."""
        worker = self._worker
        if worker is not None and not worker.done():
            worker.cancel()
            await asyncio.gather(worker, return_exceptions=True)
