# Application orchestrator: wiring, startup validation and shutdown
from typing import Any, Dict, Optional

from app.containers import AppContainer
from core.logging import configure_logging, get_logger, get_statistics
from core.trading.models import OrderOverrides, PlacementSummary
from services.account_config import get_configuration_summary, validate_all_accounts


class ApplicationOrchestrator:
    """Builds the service graph and runs one-shot pipeline operations."""

    def __init__(self, container: Optional[AppContainer] = None):
        self.container = container or AppContainer()
        self.settings = self.container.settings()
        configure_logging(self.settings)
        self.logger = get_logger("signal_relay.main", component="application")

        self.coordinator = self.container.order_coordinator()
        self.scheduler = self.container.rebase_scheduler()
        self.resolver = self.container.identifier_resolver()
        self.account_provider = self.container.account_provider()
        self.gateway = self.container.brokerage_gateway()

    async def startup(self) -> Dict[str, Any]:
        """Validate account configuration and log a summary."""
        self.logger.info("Signal relay starting",
                         broker=self.settings.active_broker,
                         environment=self.settings.environment.value)
        accounts = await self.account_provider.get_accounts()
        validation = validate_all_accounts(accounts)
        if validation.is_valid:
            self.logger.info("Account configuration validated", accounts=len(accounts))
        else:
            for error in validation.errors:
                self.logger.warning("Account configuration problem", error=error)
        return {
            "summary": get_configuration_summary(accounts),
            "is_valid": validation.is_valid,
            "errors": validation.errors,
            "logging": get_statistics(),
        }

    async def place(self, payload: Dict[str, Any], account_id: Optional[int] = None,
                    overrides: Optional[OrderOverrides] = None,
                    wait_seconds: Optional[float] = None) -> PlacementSummary:
        summary = await self.coordinator.place_signal(payload, accounts=account_id, overrides=overrides)
        if wait_seconds:
            await self.scheduler.wait_for_completion(timeout=wait_seconds)
        return summary

    async def shutdown(self) -> None:
        """Stop background rebasing and release HTTP clients."""
        status = self.scheduler.get_queue_status()
        if status.queue_length or status.is_processing:
            self.logger.warning("Shutting down with pending rebase work",
                                queue_length=status.queue_length)
        await self.scheduler.shutdown()
        close = getattr(self.gateway, "close", None)
        if close is not None:
            await close()
        self.logger.info("Signal relay shutdown complete")
