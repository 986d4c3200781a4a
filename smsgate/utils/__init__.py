"""Utility functions."""

from smsgate.utils.helpers import format_amount, format_utc_datetime

__all__ = ["format_amount", "format_utc_datetime"]
