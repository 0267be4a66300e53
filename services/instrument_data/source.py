"""
Suppliers of the raw instrument feed.
"""

import os
from pathlib import Path

import httpx
import structlog

from core.utils.exceptions import InstrumentCatalogError

logger = structlog.get_logger(__name__)


class HttpInstrumentSource:
    """Download the scrip master CSV over HTTP."""

    def __init__(self, url: str, timeout_seconds: float = 30.0,
                 transport: httpx.AsyncBaseTransport = None):
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    async def fetch(self) -> str:
        logger.info("Fetching instrument feed", url=self.url)
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds,
                                         transport=self._transport) as client:
                response = await client.get(self.url)
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise InstrumentCatalogError(
                f"Failed to fetch instrument list: {e}", source=self.url
            ) from e
        return response.text


class FileInstrumentSource:
    """Read the scrip master from a local file."""

    def __init__(self, csv_file_path: str):
        self.csv_file_path = Path(csv_file_path)

    async def fetch(self) -> str:
        if not self.csv_file_path.is_file():
            raise InstrumentCatalogError(
                f"CSV file not found: {self.csv_file_path}", source=str(self.csv_file_path)
            )
        if not os.access(self.csv_file_path, os.R_OK):
            raise InstrumentCatalogError(
                f"Cannot read CSV file: {self.csv_file_path}", source=str(self.csv_file_path)
            )
        return self.csv_file_path.read_text(encoding='utf-8')


class StaticInstrumentSource:
    """In-memory feed, counting fetches."""

    def __init__(self, text: str):
        self.text = text
        self.fetch_count = 0

    async def fetch(self) -> str:
        self.fetch_count += 1
        return self.text
