# Position sizing rules: quantity, capital usage and protective price band
import math
from typing import Iterable, List, Tuple

from core.trading.models import AccountPolicy, PositionCalculation, SignalType
from core.trading.utils import round2
from core.utils.exceptions import ValidationError


def protective_legs(price: float, side: SignalType, stop_loss_pct: float,
                    target_pct: float) -> Tuple[float, float]:
    """
    Compute stop-loss and target prices around ``price``.

    BUY orders place the stop below and the target above the entry; SELL
    orders mirror both.

    Returns:
        Tuple[float, float]: (stop_loss_price, target_price)
    """
    if side == SignalType.SELL:
        return round2(price * (1 + stop_loss_pct)), round2(price * (1 - target_pct))
    return round2(price * (1 - stop_loss_pct)), round2(price * (1 + target_pct))


def calculate_position_size(stock_price: float, policy: AccountPolicy,
                            side: SignalType = SignalType.BUY) -> PositionCalculation:
    """
    Size one order for one account.

    A rejection is a normal result with ``can_place_order=False`` and a
    ``reason``. Exceeding ``max_order_value`` never rejects: the quantity is
    reduced to fit instead. The reduced quantity may be zero when a single
    share costs more than the cap; callers decide whether that is placeable.
    """
    if stock_price is None or not math.isfinite(stock_price) or stock_price <= 0:
        raise ValidationError(
            f"Stock price must be positive, got {stock_price}",
            field="price", value=stock_price, expected_type="positive number",
        )

    funds = policy.available_funds
    leverage = policy.leverage

    calculated_quantity = math.floor(funds / stock_price)
    capped_risk = min(policy.risk_on_capital, 1.0)
    final_quantity = math.floor(calculated_quantity * capped_risk)

    order_value = final_quantity * stock_price
    leveraged_value = order_value / leverage
    position_size_pct = leveraged_value / funds * 100 if funds > 0 else 0.0

    stop_loss_price, target_price = protective_legs(
        stock_price, side, policy.stop_loss_pct, policy.target_pct
    )

    def result(final_qty: int, value: float, lev_value: float, pct: float,
               can_place: bool, reason=None) -> PositionCalculation:
        return PositionCalculation(
            stock_price=stock_price,
            available_funds=funds,
            leverage=leverage,
            calculated_quantity=calculated_quantity,
            risk_on_capital=policy.risk_on_capital,
            final_quantity=final_qty,
            order_value=value,
            leveraged_value=lev_value,
            position_size_pct=pct,
            can_place_order=can_place,
            reason=reason,
            stop_loss_price=stop_loss_price,
            target_price=target_price,
            account_id=policy.account_id,
            client_id=policy.client_id,
        )

    if calculated_quantity <= 0:
        return result(final_quantity, order_value, leveraged_value, position_size_pct,
                      False, "Stock price too high for available funds")

    if final_quantity <= 0:
        return result(final_quantity, order_value, leveraged_value, position_size_pct,
                      False, "Risk on capital multiplier resulted in zero quantity")

    if leveraged_value < policy.min_order_value:
        return result(final_quantity, order_value, leveraged_value, position_size_pct, False,
                      f"Leveraged value ({leveraged_value:.2f}) below minimum ({policy.min_order_value})")

    if leveraged_value > policy.max_order_value:
        adjusted_quantity = math.floor(policy.max_order_value * leverage / stock_price)
        adjusted_value = adjusted_quantity * stock_price
        adjusted_leveraged = adjusted_value / leverage
        adjusted_pct = adjusted_leveraged / funds * 100
        return result(adjusted_quantity, adjusted_value, adjusted_leveraged, adjusted_pct, True,
                      f"Adjusted to max order value ({policy.max_order_value})")

    if position_size_pct > 100:
        return result(final_quantity, order_value, leveraged_value, position_size_pct, False,
                      f"Position size ({position_size_pct:.2f}%) exceeds available capital (100%)")

    return result(final_quantity, order_value, leveraged_value, position_size_pct, True)


def calculate_for_accounts(stock_price: float, policies: Iterable[AccountPolicy],
                           side: SignalType = SignalType.BUY) -> List[PositionCalculation]:
    """Size the same price for every given account, preserving order."""
    return [calculate_position_size(stock_price, policy, side) for policy in policies]
