"""
Instrument Data Service

Provides scrip master parsing, fuzzy matching and ticker resolution.
"""

from .csv_loader import InstrumentCSVLoader, InstrumentRecord
from .matcher import score, rank, best_match
from .resolver import IdentifierResolver
from .source import FileInstrumentSource, HttpInstrumentSource, StaticInstrumentSource

__all__ = [
    'InstrumentCSVLoader',
    'InstrumentRecord',
    'IdentifierResolver',
    'FileInstrumentSource',
    'HttpInstrumentSource',
    'StaticInstrumentSource',
    'score',
    'rank',
    'best_match',
]
