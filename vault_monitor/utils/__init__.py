"""Utility functions for the Vault Monitor."""

from .formatters import (
    format_token_amount,
    format_percentage,
    format_decimal,
    format_timestamp,
    explorer_url
)

__all__ = [
    "format_token_amount",
    "format_percentage",
    "format_decimal",
    "format_timestamp",
    "explorer_url"
]
