"""
Centralized id generation.

Correlation ids are sent to the broker with every order so a placement can be
traced back to the signal that produced it. Order book ids are local only.
"""

from __future__ import annotations

import secrets
import time
from uuid import uuid4


def _time_prefix() -> str:
    return str(int(time.time() * 1000))


def generate_correlation_id(prefix: str = "TV") -> str:
    """Generate a broker correlation id: ``<prefix>_<epoch ms>_<9 random chars>``."""
    suffix = secrets.token_hex(5)[:9]
    return f"{prefix}_{_time_prefix()}_{suffix}"


def generate_order_record_id() -> str:
    """Generate a unique id for a locally tracked order record."""
    return f"order_{_time_prefix()}_{uuid4().hex[:9]}"
