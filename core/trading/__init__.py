"""
Shared trading core: interfaces and models.

This package hosts broker-agnostic types used by the sizing, resolution,
placement and rebase services.
"""
