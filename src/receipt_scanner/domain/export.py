"""CSV export of completed receipts (Excel-friendly, UTF-8 with BOM)."""

from __future__ import annotations

from datetime import date
from typing import Iterable, List, Optional

from .models import ReceiptItem, ReceiptStatus
from .stats import as_amount


CSV_HEADERS = ("Date (YYYY-MM-DD)", "Total Amount (DKK)", "MOMS (DKK)", "Shop Name")
CSV_MEDIA_TYPE = "text/csv; charset=utf-8"
BOM = "\ufeff"


class NothingToExportError(Exception):
    def __init__(self, message: str = "No processed data available to export.") -> None:
        super().__init__(message)


def _quote(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


def _date_field(value: str) -> str:
    # edited dates are stored verbatim and may hold separators
    if any(ch in value for ch in ',"\r\n'):
        return _quote(value)
    return value


def build_csv(items: Iterable[ReceiptItem]) -> str:
    """Return CSV text (without BOM) for every completed receipt."""
    completed = [
        item.extracted
        for item in items
        if item.status is ReceiptStatus.COMPLETED and item.extracted is not None
    ]
    if not completed:
        raise NothingToExportError()

    lines: List[str] = [",".join(CSV_HEADERS)]
    for data in completed:
        lines.append(
            ",".join(
                [
                    _date_field(str(data.purchase_date)),
                    f"{as_amount(data.total_amount):.2f}",
                    f"{as_amount(data.moms):.2f}",
                    _quote(str(data.shop_name or "")),
                ]
            )
        )
    return "\n".join(lines)


def build_csv_bytes(items: Iterable[ReceiptItem]) -> bytes:
    """CSV encoded as UTF-8 with a leading byte-order mark."""
    return (BOM + build_csv(items)).encode("utf-8")


def export_filename(today: Optional[date] = None) -> str:
    return f"receipts_export_{(today or date.today()).isoformat()}.csv"
