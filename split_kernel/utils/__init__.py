"""Utility functions for the split kernel."""

from split_kernel.utils.idempotency import generate_settlement_key, parse_settlement_key

__all__ = [
    "generate_settlement_key",
    "parse_settlement_key",
]
