# Dependency injection container for the signal relay
from dependency_injector import containers, providers

from core.config.settings import Settings
from core.utils.clock import SystemClock
from services.account_config import EnvAccountConfigProvider
from services.brokerage import DhanGateway, PaperGateway
from services.instrument_data import HttpInstrumentSource, IdentifierResolver, InstrumentCSVLoader
from services.order_coordinator import OrderCoordinator
from services.order_guard import DuplicateGuard
from services.rebase import RebaseScheduler


class AppContainer(containers.DeclarativeContainer):
    """Application dependency injection container"""

    # Configuration
    settings = providers.Singleton(Settings)

    clock = providers.Singleton(SystemClock)

    # Instrument catalog
    instrument_source = providers.Singleton(
        HttpInstrumentSource,
        url=settings.provided.dhan.instrument_feed_url,
        timeout_seconds=settings.provided.dhan.request_timeout_seconds,
    )

    instrument_loader = providers.Singleton(
        InstrumentCSVLoader,
        exchange=settings.provided.instruments.exchange,
        segment=settings.provided.instruments.segment,
        instrument_type=settings.provided.instruments.instrument_type,
    )

    identifier_resolver = providers.Singleton(
        IdentifierResolver,
        source=instrument_source,
        clock=clock,
        loader=instrument_loader,
        cache_ttl_hours=settings.provided.instruments.cache_ttl_hours,
        resolve_attempts=settings.provided.instruments.resolve_attempts,
        retry_delay_seconds=settings.provided.instruments.retry_delay_seconds,
    )

    duplicate_guard = providers.Singleton(
        DuplicateGuard,
        clock=clock,
        retention_days=settings.provided.duplicate_guard.retention_days,
    )

    account_provider = providers.Singleton(
        EnvAccountConfigProvider,
        dhan_settings=settings.provided.dhan,
    )

    # Broker selection follows settings.active_broker
    brokerage_gateway = providers.Selector(
        settings.provided.active_broker,
        dhan=providers.Singleton(DhanGateway, settings=settings.provided.dhan),
        paper=providers.Singleton(PaperGateway, settings=settings.provided.paper_trading),
    )

    rebase_scheduler = providers.Singleton(
        RebaseScheduler,
        gateway=brokerage_gateway,
        clock=clock,
        settings=settings.provided.rebase,
    )

    order_coordinator = providers.Singleton(
        OrderCoordinator,
        resolver=identifier_resolver,
        guard=duplicate_guard,
        gateway=brokerage_gateway,
        account_provider=account_provider,
        scheduler=rebase_scheduler,
        clock=clock,
        dhan_settings=settings.provided.dhan,
    )
