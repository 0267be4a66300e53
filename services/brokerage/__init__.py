"""
Brokerage gateways: live Dhan REST and an in-memory paper simulator.
"""

from .dhan_gateway import DhanGateway, parse_order
from .paper_gateway import PaperGateway

__all__ = ["DhanGateway", "PaperGateway", "parse_order"]
