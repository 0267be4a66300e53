"""Leverage and risk aware position sizing."""

from .calculator import calculate_for_accounts, calculate_position_size, protective_legs

__all__ = ["calculate_position_size", "calculate_for_accounts", "protective_legs"]
