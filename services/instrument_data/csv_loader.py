"""
Scrip master feed parsing for the instrument catalog.
"""

import csv
import io
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional
import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class InstrumentRecord:
    """One tradeable instrument row from the scrip master."""
    security_id: str
    symbol: str
    display_name: str = ""


class InstrumentCSVLoader:
    """
    Parser for the broker's delimited instrument feed.

    The feed carries every exchange and segment; only rows matching the
    configured exchange, segment and instrument type are kept.
    """

    REQUIRED_FIELDS = ('EXCH_ID', 'SEGMENT', 'SECURITY_ID', 'INSTRUMENT', 'SYMBOL_NAME')

    def __init__(self, exchange: str = "NSE", segment: str = "E", instrument_type: str = "EQUITY"):
        self.exchange = exchange.upper()
        self.segment = segment.upper()
        self.instrument_type = instrument_type.upper()

    def iter_rows(self, text: str) -> Iterator[Dict[str, str]]:
        """
        Yield cleaned rows from the raw feed text.

        Blank lines are skipped and rows whose column count does not match
        the header are dropped as malformed.
        """
        lines = [line for line in text.splitlines() if line.strip()]
        if not lines:
            logger.warning("Instrument feed is empty")
            return

        reader = csv.reader(lines)
        headers = [h.strip().strip('"').upper() for h in next(reader)]
        missing = [f for f in self.REQUIRED_FIELDS if f not in headers]
        if missing:
            raise ValueError(f"Instrument feed missing columns: {', '.join(missing)}")

        for row_num, values in enumerate(reader, start=2):
            if len(values) != len(headers):
                logger.debug("Skipping malformed instrument row", row=row_num)
                continue
            yield {key: (value or '').strip().strip('"') for key, value in zip(headers, values)}

    def _matches_filter(self, row: Dict[str, str]) -> bool:
        return (
            row.get('EXCH_ID', '').upper() == self.exchange
            and row.get('SEGMENT', '').upper() == self.segment
            and row.get('INSTRUMENT', '').upper() == self.instrument_type
        )

    def load_instruments(self, text: str) -> List[InstrumentRecord]:
        """
        Parse the feed into instrument records.

        Returns:
            Records for the configured exchange/segment/instrument type,
            in feed order
        """
        instruments = []
        for row in self.iter_rows(text):
            if not self._matches_filter(row):
                continue
            if not row.get('SECURITY_ID') or not row.get('SYMBOL_NAME'):
                continue
            instruments.append(InstrumentRecord(
                security_id=row['SECURITY_ID'],
                symbol=row['SYMBOL_NAME'].upper(),
                display_name=row.get('DISPLAY_NAME', '').upper(),
            ))

        logger.info("Parsed instrument feed",
                    instruments=len(instruments),
                    exchange=self.exchange,
                    segment=self.segment)
        return instruments

    def build_catalog(self, text: str) -> Dict[str, str]:
        """
        Build the ticker -> security id map.

        Display names are indexed as aliases when they differ from the symbol.
        Insertion order follows the feed, which fixes fuzzy tie-breaking.
        """
        catalog: Dict[str, str] = {}
        for record in self.load_instruments(text):
            catalog[record.symbol] = record.security_id
            alias: Optional[str] = record.display_name
            if alias and alias != record.symbol and alias not in catalog:
                catalog[alias] = record.security_id
        return catalog
