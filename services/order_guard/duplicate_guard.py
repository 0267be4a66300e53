"""
Per-ticker, per-day duplicate order protection.

One successful placement marks a ticker for the calendar day; further
signals for it are refused until the next day unless the account allows
duplicates.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Dict, Any, Optional, Tuple

import structlog

from core.trading.utils import normalize_ticker
from core.utils.clock import Clock

logger = structlog.get_logger(__name__)


@dataclass
class GuardEntry:
    ticker: str
    day: date
    order_count: int
    last_order_at: datetime


class DuplicateGuard:
    """In-memory (ticker, day) table with a retention window"""

    def __init__(self, clock: Clock, retention_days: int = 30):
        """
        Args:
            clock: Source of the current exchange-local date
            retention_days: Entries older than this many days are pruned
        """
        self.clock = clock
        self.retention_days = retention_days
        self._entries: Dict[Tuple[str, date], GuardEntry] = {}
        self._stats = {
            "total_checks": 0,
            "duplicates_found": 0,
            "orders_recorded": 0,
            "entries_pruned": 0,
        }

    def has_ordered_today(self, ticker: str) -> bool:
        """True iff an order for this ticker was recorded today."""
        self._stats["total_checks"] += 1
        key = (normalize_ticker(ticker), self.clock.today())
        if key in self._entries:
            self._stats["duplicates_found"] += 1
            logger.debug("Duplicate ticker detected", ticker=key[0])
            return True
        return False

    def record_order(self, ticker: str) -> GuardEntry:
        """Record an order for today, incrementing the count."""
        today = self.clock.today()
        key = (normalize_ticker(ticker), today)
        now = self.clock.now()

        entry = self._entries.get(key)
        if entry is None:
            entry = GuardEntry(ticker=key[0], day=today, order_count=1, last_order_at=now)
            self._entries[key] = entry
        else:
            entry.order_count += 1
            entry.last_order_at = now

        self._stats["orders_recorded"] += 1
        self._prune(today)
        logger.debug("Recorded ticker order", ticker=entry.ticker, count=entry.order_count)
        return entry

    def get_entry(self, ticker: str, day: Optional[date] = None) -> Optional[GuardEntry]:
        return self._entries.get((normalize_ticker(ticker), day or self.clock.today()))

    def _prune(self, today: date) -> None:
        cutoff = today - timedelta(days=self.retention_days)
        expired = [key for key in self._entries if key[1] < cutoff]
        for key in expired:
            del self._entries[key]
        if expired:
            self._stats["entries_pruned"] += len(expired)
            logger.debug("Pruned duplicate guard entries", count=len(expired))

    def reset(self) -> None:
        """Forget every recorded order."""
        self._entries.clear()
        logger.info("Duplicate guard reset")

    def stats(self) -> Dict[str, Any]:
        today = self.clock.today()
        return {
            **self._stats,
            "entries": len(self._entries),
            "tickers_today": sorted(t for (t, d) in self._entries if d == today),
        }
