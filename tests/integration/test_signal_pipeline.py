"""
End-to-end signal pipeline through the application container.

Only the edges are replaced: clock, instrument feed, account source and,
for the Dhan flow, the HTTP transport.
"""
import json

import httpx
import pytest
from dependency_injector import providers

from app.containers import AppContainer
from app.main import ApplicationOrchestrator
from core.trading.models import SignalType
from services.account_config import StaticAccountConfigProvider
from services.brokerage import DhanGateway, PaperGateway
from services.instrument_data import StaticInstrumentSource
from services.position_sizing import protective_legs

SIGNAL = {"ticker": "INFY", "price": 2500.0, "signal": "BUY", "strategy": "breakout"}


def build_container(settings, clock, catalog_csv, accounts):
    container = AppContainer()
    container.settings.override(providers.Object(settings))
    container.clock.override(providers.Object(clock))
    container.instrument_source.override(providers.Object(StaticInstrumentSource(catalog_csv)))
    container.account_provider.override(providers.Object(StaticAccountConfigProvider(accounts)))
    return container


@pytest.fixture
def accounts(make_policy):
    return [make_policy(1), make_policy(2, available_funds=40000.0, max_order_value=20000.0)]


class TestPaperPipeline:
    @pytest.fixture
    async def app(self, test_settings, clock, catalog_csv, accounts):
        app = ApplicationOrchestrator(build_container(test_settings, clock, catalog_csv, accounts))
        yield app
        await app.shutdown()

    async def test_uses_paper_gateway(self, app):
        assert isinstance(app.gateway, PaperGateway)

    async def test_startup_reports_configuration(self, app):
        report = await app.startup()

        assert report["is_valid"] is True
        assert report["errors"] == []
        assert report["summary"]["total_accounts"] == 2
        assert report["summary"]["total_available_funds"] == 60000.0
        assert report["logging"]["configured"] is True

    async def test_signal_placed_and_rebased(self, app):
        summary = await app.place(SIGNAL, wait_seconds=2.0)

        assert summary.successful_orders == 2
        assert [r.order.quantity for r in summary.results] == [4, 16]

        results = app.scheduler.results()
        assert len(results) == 2
        assert all(r.success for r in results)
        for result in summary.results:
            order = app.coordinator.get_order(result.order.order_id)
            assert order.fill_price is not None

    async def test_duplicate_signal_refused(self, app):
        await app.place(SIGNAL)
        summary = await app.place(SIGNAL)

        assert summary.successful_orders == 0
        assert {r.error_type for r in summary.results} == {"DuplicateOrder"}

    async def test_single_account_placement(self, app):
        summary = await app.place({**SIGNAL, "ticker": "Infosys"}, account_id=2)

        assert summary.total_accounts == 1
        assert summary.results[0].order.security_id == "1594"


class DhanExchange:
    """Minimal stateful stand-in for the Dhan REST API."""

    def __init__(self, fill_price: float):
        self.fill_price = fill_price
        self.orders = {}
        self.amendments = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if request.method == "POST" and path == "/v2/super/orders":
            body = json.loads(request.content)
            order_id = f"ORD{len(self.orders) + 1}"
            self.orders[order_id] = body
            return httpx.Response(200, json={"orderId": order_id, "orderStatus": "TRANSIT"})

        if request.method == "GET" and path.startswith("/v2/orders/"):
            order_id = path.rsplit("/", 1)[-1]
            placed = self.orders.get(order_id)
            if placed is None:
                return httpx.Response(404, json={"errorMessage": "Order not found"})
            return httpx.Response(200, json={
                "orderId": order_id,
                "orderStatus": "TRADED",
                "transactionType": placed["transactionType"],
                "quantity": placed["quantity"],
                "averageTradedPrice": self.fill_price,
                "stopLossPrice": placed["stopLossPrice"],
                "targetPrice": placed["targetPrice"],
            })

        if request.method == "PUT" and path.startswith("/v2/super/orders/"):
            self.amendments.append(json.loads(request.content))
            return httpx.Response(200, json={"orderStatus": "PENDING"})

        return httpx.Response(404, json={"errorMessage": f"Unexpected {request.method} {path}"})


class TestDhanPipeline:
    def test_selector_builds_dhan_gateway(self, test_settings, clock, catalog_csv, accounts):
        settings = test_settings.model_copy(update={"active_broker": "dhan"})
        container = build_container(settings, clock, catalog_csv, accounts)
        assert isinstance(container.brokerage_gateway(), DhanGateway)

    async def test_fill_away_from_signal_rebases_legs(self, test_settings, clock, catalog_csv, accounts):
        exchange = DhanExchange(fill_price=2510.0)
        settings = test_settings.model_copy(update={"active_broker": "dhan"})
        container = build_container(settings, clock, catalog_csv, accounts[:1])
        container.brokerage_gateway.override(providers.Object(
            DhanGateway(settings.dhan, transport=httpx.MockTransport(exchange))
        ))
        app = ApplicationOrchestrator(container)
        try:
            summary = await app.place(SIGNAL, wait_seconds=2.0)
        finally:
            await app.shutdown()

        assert summary.successful_orders == 1
        placed = exchange.orders["ORD1"]
        assert placed["securityId"] == "1594"
        assert placed["price"] == 0.0
        assert placed["stopLossPrice"] == 2475.0

        policy = accounts[0]
        new_sl, new_tp = protective_legs(2510.0, SignalType.BUY, policy.stop_loss_pct, policy.target_pct)
        assert exchange.amendments == [
            {"dhanClientId": policy.client_id, "orderId": "ORD1", "legName": "TARGET_LEG", "targetPrice": new_tp},
            {"dhanClientId": policy.client_id, "orderId": "ORD1", "legName": "STOP_LOSS_LEG",
             "stopLossPrice": new_sl},
        ]

        order = app.coordinator.get_order("ORD1")
        assert order.fill_price == 2510.0
        assert order.rebased_stop_loss_price == new_sl
