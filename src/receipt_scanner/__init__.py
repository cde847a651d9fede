"""
Danish receipt scanner.

Upload receipt photos, read shop, date, total and moms through a vision LLM,
reconcile the total against the Danish 25% VAT rule and export CSV.
"""

__all__ = [
    "config",
    "logging",
    "paths",
    "preferences",
]
