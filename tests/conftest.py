"""
Pytest configuration and shared fixtures for Signal Relay tests.
"""
import random

import pytest

from core.config.settings import (
    DuplicateGuardSettings,
    InstrumentSettings,
    LoggingSettings,
    PaperTradingSettings,
    RebaseSettings,
    Settings,
)
from core.trading.models import AccountPolicy
from services.account_config import StaticAccountConfigProvider
from services.brokerage import PaperGateway
from services.instrument_data import IdentifierResolver, InstrumentCSVLoader, StaticInstrumentSource
from services.order_coordinator import OrderCoordinator
from services.order_guard import DuplicateGuard
from services.rebase import RebaseScheduler
from tests.mocks.fake_clock import FakeClock
from tests.mocks.mock_dhan_api import MockDhanGateway

CATALOG_CSV = """EXCH_ID,SEGMENT,SECURITY_ID,INSTRUMENT,SYMBOL_NAME,DISPLAY_NAME
NSE,E,1333,EQUITY,HDFCBANK,HDFC Bank
NSE,E,1594,EQUITY,INFY,Infosys
NSE,E,2885,EQUITY,RELIANCE,Reliance Industries
NSE,E,11536,EQUITY,TCS,Tata Consultancy Services
NSE,E,3045,EQUITY,SBIN,State Bank of India
NSE,E,317,EQUITY,BAJFINANCE,Bajaj Finance
BSE,E,500325,EQUITY,RELIANCE,Reliance Industries
NSE,D,35001,FUTSTK,INFY,INFY FUT
"""


@pytest.fixture
def test_settings():
    """Test settings configuration."""
    return Settings(
        environment="testing",
        active_broker="paper",
        logging=LoggingSettings(level="WARNING", file_enabled=False),
        instruments=InstrumentSettings(retry_delay_seconds=1.0),
        duplicate_guard=DuplicateGuardSettings(retention_days=30),
        rebase=RebaseSettings(
            initial_delay_seconds=5.0,
            retry_delay_seconds=2.0,
            inter_item_delay_seconds=0.5,
            inter_account_delay_seconds=1.0,
            max_attempts=3,
            completion_timeout_seconds=5.0,
        ),
        paper_trading=PaperTradingSettings(slippage_percent=0.05),
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_policy():
    """Factory for account policies with test-friendly defaults."""
    def _make(account_id: int = 1, **overrides) -> AccountPolicy:
        values = {
            "account_id": account_id,
            "client_id": f"CLIENT{account_id:03d}",
            "access_token": f"token-{account_id}",
        }
        values.update(overrides)
        return AccountPolicy(**values)
    return _make


@pytest.fixture
def catalog_csv():
    return CATALOG_CSV


@pytest.fixture
def instrument_source(catalog_csv):
    return StaticInstrumentSource(catalog_csv)


@pytest.fixture
def resolver(instrument_source, clock, test_settings):
    return IdentifierResolver(
        source=instrument_source,
        clock=clock,
        loader=InstrumentCSVLoader(),
        cache_ttl_hours=test_settings.instruments.cache_ttl_hours,
        resolve_attempts=test_settings.instruments.resolve_attempts,
        retry_delay_seconds=test_settings.instruments.retry_delay_seconds,
    )


@pytest.fixture
def guard(clock):
    return DuplicateGuard(clock, retention_days=30)


@pytest.fixture
def paper_gateway(test_settings):
    return PaperGateway(test_settings.paper_trading, rng=random.Random(42))


@pytest.fixture
def mock_gateway():
    return MockDhanGateway()


@pytest.fixture
def rebase_settings(test_settings):
    return test_settings.rebase


@pytest.fixture
def account_provider(make_policy):
    return StaticAccountConfigProvider([make_policy(1), make_policy(2), make_policy(3)])


@pytest.fixture
def build_coordinator(resolver, guard, clock, account_provider, test_settings):
    """Build a coordinator and its scheduler around a given gateway."""
    def _build(gateway, provider=None, **kwargs):
        scheduler = RebaseScheduler(gateway, clock, test_settings.rebase)
        coordinator = OrderCoordinator(
            resolver=kwargs.pop("resolver", resolver),
            guard=guard,
            gateway=gateway,
            account_provider=provider or account_provider,
            scheduler=scheduler,
            clock=clock,
            dhan_settings=test_settings.dhan,
            **kwargs,
        )
        return coordinator, scheduler
    return _build
