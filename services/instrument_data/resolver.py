"""
Ticker to security id resolution backed by a TTL'd catalog cache.
"""

import asyncio
from typing import Dict, List, Optional, Tuple

import structlog

from core.trading.interfaces import InstrumentSource
from core.trading.utils import normalize_ticker
from core.utils.clock import Clock
from core.utils.exceptions import IdentifierNotFoundError, InstrumentCatalogError
from .csv_loader import InstrumentCSVLoader
from .matcher import best_match

logger = structlog.get_logger(__name__)


class IdentifierResolver:
    """
    Resolves tickers to exchange security ids.

    Owns one catalog cache per instance. Lookup is an exact match on the
    normalized ticker, then the best fuzzy match. A miss is retried with a
    forced refresh before ``IdentifierNotFoundError`` is raised; the raw
    ticker is never handed back as an id.
    """

    def __init__(self, source: InstrumentSource, clock: Clock,
                 loader: Optional[InstrumentCSVLoader] = None,
                 cache_ttl_hours: float = 24.0,
                 resolve_attempts: int = 3,
                 retry_delay_seconds: float = 0.0):
        self.source = source
        self.clock = clock
        self.loader = loader or InstrumentCSVLoader()
        self.cache_ttl_seconds = cache_ttl_hours * 3600
        self.resolve_attempts = max(1, resolve_attempts)
        self.retry_delay_seconds = retry_delay_seconds

        self._catalog: Optional[Dict[str, str]] = None
        self._loaded_at: Optional[float] = None
        self._generation = 0
        self._refresh_lock = asyncio.Lock()

    @property
    def is_loaded(self) -> bool:
        return self._catalog is not None

    def _is_fresh(self) -> bool:
        if self._catalog is None or self._loaded_at is None:
            return False
        return (self.clock.monotonic() - self._loaded_at) < self.cache_ttl_seconds

    def invalidate(self) -> None:
        """Drop the cached catalog; the next lookup refetches."""
        self._catalog = None
        self._loaded_at = None
        logger.info("Instrument cache cleared")

    async def _refresh(self, seen_generation: int) -> Dict[str, str]:
        async with self._refresh_lock:
            # Another caller refreshed while we waited
            if self._generation != seen_generation and self._catalog is not None:
                return self._catalog

            text = await self.source.fetch()
            try:
                catalog = self.loader.build_catalog(text)
            except ValueError as e:
                raise InstrumentCatalogError(f"Invalid instrument feed: {e}") from e

            self._catalog = catalog
            self._loaded_at = self.clock.monotonic()
            self._generation += 1
            logger.info("Instrument cache refreshed", instruments=len(catalog),
                        generation=self._generation)
            return catalog

    async def get_catalog(self, force_refresh: bool = False) -> Dict[str, str]:
        if not force_refresh and self._is_fresh():
            return self._catalog
        return await self._refresh(self._generation)

    @staticmethod
    def _lookup(catalog: Dict[str, str], ticker: str) -> Optional[Tuple[str, str]]:
        security_id = catalog.get(ticker)
        if security_id:
            return ticker, security_id
        match = best_match(ticker, catalog.keys())
        if match:
            return match, catalog[match]
        return None

    async def resolve(self, ticker: str) -> str:
        """
        Resolve a ticker to its security id.

        Raises:
            IdentifierNotFoundError: no exact or fuzzy match after every attempt
            InstrumentCatalogError: the catalog could never be loaded
        """
        normalized = normalize_ticker(ticker)
        if not normalized:
            raise IdentifierNotFoundError("Empty ticker", ticker=ticker, attempts=0)

        last_catalog_error: Optional[InstrumentCatalogError] = None
        for attempt in range(1, self.resolve_attempts + 1):
            try:
                catalog = await self.get_catalog(force_refresh=attempt > 1)
            except InstrumentCatalogError as e:
                last_catalog_error = e
                logger.warning("Instrument catalog unavailable", ticker=normalized,
                               attempt=attempt, error=str(e))
                catalog = self._catalog

            if catalog is not None:
                found = self._lookup(catalog, normalized)
                if found:
                    key, security_id = found
                    if key == normalized:
                        logger.debug("Resolved ticker", ticker=normalized, security_id=security_id)
                    else:
                        logger.info("Resolved ticker by fuzzy match", ticker=normalized,
                                    matched=key, security_id=security_id)
                    return security_id

            logger.warning("Ticker not found", ticker=normalized, attempt=attempt,
                           max_attempts=self.resolve_attempts)
            if attempt < self.resolve_attempts:
                await self.clock.sleep(self.retry_delay_seconds)

        if self._catalog is None and last_catalog_error is not None:
            raise last_catalog_error
        raise IdentifierNotFoundError(
            f"Ticker {normalized} not found in instrument list",
            ticker=normalized, attempts=self.resolve_attempts,
        )

    async def available_tickers(self) -> List[str]:
        catalog = await self.get_catalog()
        return sorted(catalog.keys())

    async def search(self, query: str) -> List[Tuple[str, str]]:
        """List (ticker, security id) pairs whose ticker contains ``query``."""
        catalog = await self.get_catalog()
        needle = normalize_ticker(query)
        return sorted(
            (ticker, security_id) for ticker, security_id in catalog.items() if needle in ticker
        )
