from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional


UNKNOWN_SHOP = "Unknown Shop"


class ReceiptStatus(str, Enum):
    IDLE = "IDLE"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


class Provider(str, Enum):
    GEMINI = "GEMINI"
    OPENROUTER = "OPENROUTER"
    OPENAI = "OPENAI"

    @classmethod
    def parse(cls, value: Any, default: Optional["Provider"] = None) -> "Provider":
        """Resolve a provider name case-insensitively, falling back to default."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str) and value.strip():
            try:
                return cls(value.strip().upper())
            except ValueError:
                pass
        if default is None:
            raise ValueError(f"Unknown provider: {value!r}")
        return default


@dataclass(frozen=True)
class SourceFile:
    """An uploaded image and its declared media type."""

    filename: str
    content: bytes = field(repr=False)
    media_type: str = "application/octet-stream"

    @property
    def byte_size(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class ExtractedData:
    shop_name: str
    purchase_date: str  # YYYY-MM-DD
    total_amount: float
    moms: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "shopName": self.shop_name,
            "purchaseDate": self.purchase_date,
            "totalAmount": self.total_amount,
            "moms": self.moms,
        }


@dataclass
class ReceiptItem:
    id: str
    source: SourceFile
    status: ReceiptStatus = ReceiptStatus.IDLE
    extracted: Optional[ExtractedData] = None
    error_message: Optional[str] = None

    def snapshot(self) -> "ReceiptItem":
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "filename": self.source.filename,
            "mediaType": self.source.media_type,
            "status": self.status.value,
            "data": self.extracted.to_dict() if self.extracted else None,
            "error": self.error_message,
        }


@dataclass(frozen=True)
class ShopSpend:
    name: str
    amount: float


@dataclass(frozen=True)
class AggregateStats:
    total_spent: float
    total_vat: float
    count: int
    per_shop: List[ShopSpend]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalSpent": round(self.total_spent, 2),
            "totalVat": round(self.total_vat, 2),
            "count": self.count,
            "perShop": [{"name": s.name, "value": round(s.amount, 2)} for s in self.per_shop],
        }
