import random

import pytest

from core.config.settings import PaperTradingSettings
from core.trading.models import BrokerOrderStatus, LegAmendment, LegName, OrderRequest, SignalType
from services.brokerage import PaperGateway


def make_request(side=SignalType.BUY, order_type="MARKET", price=0.0, reference_price=2500.0, **kwargs):
    values = dict(
        client_id="CLIENT001",
        correlation_id="TV_1_abc",
        transaction_type=side,
        exchange_segment="NSE_EQ",
        product_type="INTRADAY",
        order_type=order_type,
        security_id="1594",
        quantity=4,
        price=price,
        reference_price=reference_price,
        target_price=2537.5,
        stop_loss_price=2475.0,
    )
    values.update(kwargs)
    return OrderRequest(**values)


async def test_market_buy_fills_with_adverse_slippage(paper_gateway, make_policy):
    policy = make_policy()
    placed = await paper_gateway.place_order(policy, make_request())

    assert placed.success
    assert placed.order_id.startswith("paper_")
    order = (await paper_gateway.get_order(policy, placed.order_id)).order
    assert order.status == BrokerOrderStatus.TRADED
    # 0.05% slippage scaled by 0.5..1.5
    assert 2500.62 <= order.filled_price <= 2501.88


async def test_market_sell_fills_below_reference(paper_gateway, make_policy):
    policy = make_policy()
    placed = await paper_gateway.place_order(policy, make_request(side=SignalType.SELL))
    order = (await paper_gateway.get_order(policy, placed.order_id)).order
    assert 2498.12 <= order.filled_price <= 2499.38


async def test_zero_slippage_fills_at_reference(make_policy):
    gateway = PaperGateway(PaperTradingSettings(slippage_percent=0.0), rng=random.Random(1))
    policy = make_policy()
    placed = await gateway.place_order(policy, make_request())
    assert (await gateway.get_order(policy, placed.order_id)).order.filled_price == 2500.0


async def test_limit_order_fills_at_limit(paper_gateway, make_policy):
    policy = make_policy()
    placed = await paper_gateway.place_order(policy, make_request(order_type="LIMIT", price=2490.0))
    assert (await paper_gateway.get_order(policy, placed.order_id)).order.filled_price == 2490.0


async def test_market_order_without_reference_price_fails(paper_gateway, make_policy):
    result = await paper_gateway.place_order(make_policy(), make_request(reference_price=None))
    assert not result.success
    assert result.correlation_id == "TV_1_abc"


async def test_protective_legs_are_pending(paper_gateway, make_policy):
    policy = make_policy()
    placed = await paper_gateway.place_order(policy, make_request())
    order = (await paper_gateway.get_order(policy, placed.order_id)).order

    legs = {leg.leg_name: leg for leg in order.legs}
    assert legs[LegName.ENTRY_LEG].status == "TRADED"
    assert legs[LegName.TARGET_LEG].price == 2537.5
    assert legs[LegName.STOP_LOSS_LEG].status == "PENDING"
    assert order.has_pending_legs


async def test_orders_are_scoped_to_account(paper_gateway, make_policy):
    placed = await paper_gateway.place_order(make_policy(1), make_request())
    other = await paper_gateway.get_order(make_policy(2), placed.order_id)

    assert not other.success
    assert other.transient is False
    listing = await paper_gateway.get_orders_by_status(make_policy(2), "TRADED")
    assert listing.orders == []


async def test_amend_legs_updates_prices(paper_gateway, make_policy):
    policy = make_policy()
    placed = await paper_gateway.place_order(policy, make_request())

    result = await paper_gateway.amend_legs(policy, placed.order_id,
                                            LegAmendment(target=2540.0, stop_loss=2478.0, trailing_jump=0.05))
    assert result.success

    order = (await paper_gateway.get_order(policy, placed.order_id)).order
    assert order.target_price == 2540.0
    assert order.stop_loss_price == 2478.0
    stop_leg = next(leg for leg in order.legs if leg.leg_name == LegName.STOP_LOSS_LEG)
    assert stop_leg.price == 2478.0
    assert stop_leg.trailing_jump == 0.05


@pytest.mark.parametrize("status", [BrokerOrderStatus.CANCELLED, BrokerOrderStatus.REJECTED])
async def test_amend_after_terminal_status_fails(paper_gateway, make_policy, status):
    policy = make_policy()
    placed = await paper_gateway.place_order(policy, make_request())
    paper_gateway.set_status(placed.order_id, status)

    result = await paper_gateway.amend_legs(policy, placed.order_id, LegAmendment(target=2540.0))
    assert not result.success
    assert result.transient is False


async def test_amend_unknown_order_fails(paper_gateway, make_policy):
    result = await paper_gateway.amend_legs(make_policy(), "paper_missing", LegAmendment(target=1.0))
    assert not result.success
    assert "not found" in result.error
