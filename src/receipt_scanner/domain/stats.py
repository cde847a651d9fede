from __future__ import annotations

import math
from typing import Any, Dict, Iterable, List

from .models import AggregateStats, ReceiptItem, ReceiptStatus, ShopSpend


UNKNOWN_SHOP_LABEL = "Unknown"


def as_amount(value: Any) -> float:
    """Numeric view of a stored amount; anything unusable counts as 0."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def compute_stats(items: Iterable[ReceiptItem]) -> AggregateStats:
    """Summaries over completed receipts only."""
    completed = [
        item.extracted
        for item in items
        if item.status is ReceiptStatus.COMPLETED and item.extracted is not None
    ]

    total_spent = 0.0
    total_vat = 0.0
    by_shop: Dict[str, float] = {}
    for data in completed:
        amount = as_amount(data.total_amount)
        total_spent += amount
        total_vat += as_amount(data.moms)
        shop = (data.shop_name or "").strip() or UNKNOWN_SHOP_LABEL
        by_shop[shop] = by_shop.get(shop, 0.0) + amount

    # dicts keep first-seen order and sorted() is stable
    per_shop: List[ShopSpend] = [
        ShopSpend(name=name, amount=amount)
        for name, amount in sorted(by_shop.items(), key=lambda kv: -kv[1])
    ]
    return AggregateStats(
        total_spent=total_spent,
        total_vat=total_vat,
        count=len(completed),
        per_shop=per_shop,
    )
