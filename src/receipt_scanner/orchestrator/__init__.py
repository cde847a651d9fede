"""Orchestration of the receipt pipeline: preprocessing and item lifecycle."""

from .preprocess import normalize_for_display
from .lifecycle import GENERIC_FAILURE_MESSAGE, ReceiptManager

__all__ = [
    "normalize_for_display",
    "GENERIC_FAILURE_MESSAGE",
    "ReceiptManager",
]
