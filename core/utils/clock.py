"""
Time source shared by services that depend on wall-clock time or delays.

Services take a clock in their constructor so tests can drive dates and
sleeps without real time passing.
"""

import asyncio
from datetime import date, datetime
from typing import Protocol

import pytz

IST = pytz.timezone("Asia/Kolkata")


class Clock(Protocol):
    def now(self) -> datetime:
        ...

    def today(self) -> date:
        ...

    def monotonic(self) -> float:
        ...

    async def sleep(self, seconds: float) -> None:
        ...


class SystemClock:
    """Exchange-local (IST) wall clock backed by the running event loop."""

    def __init__(self, tz=IST):
        self.tz = tz

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def today(self) -> date:
        return self.now().date()

    def monotonic(self) -> float:
        return asyncio.get_running_loop().time()

    async def sleep(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)
