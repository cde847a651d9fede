"""Receipt domain: data model, VAT reconciliation, statistics and CSV export."""

from .models import (
    AggregateStats,
    ExtractedData,
    Provider,
    ReceiptItem,
    ReceiptStatus,
    ShopSpend,
    SourceFile,
)
from .reconcile import Correction, classify, reconcile
from .stats import compute_stats
from .export import NothingToExportError, build_csv, build_csv_bytes, export_filename

__all__ = [
    "AggregateStats",
    "ExtractedData",
    "Provider",
    "ReceiptItem",
    "ReceiptStatus",
    "ShopSpend",
    "SourceFile",
    "Correction",
    "classify",
    "reconcile",
    "compute_stats",
    "NothingToExportError",
    "build_csv",
    "build_csv_bytes",
    "export_filename",
]
