"""Turn a provider's loosely typed JSON reply into `ExtractedData`.

This is the only place that touches the raw payload shape. Parsing can fail
(`InvalidFormatError`), but field coercion never does: partial data is more
useful to the user than a failed receipt.
"""

from __future__ import annotations

import json
import math
import re
from datetime import date
from typing import Any, Mapping, Optional

from ..domain.models import UNKNOWN_SHOP, ExtractedData
from ..logging import get_logger
from .errors import EmptyResponseError, InvalidFormatError


LOG = get_logger("extraction-payload")

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)
_ISO_DATE_RE = re.compile(r"^\s*(\d{4})-(\d{1,2})-(\d{1,2})")
_DAY_FIRST_RE = re.compile(r"(?<!\d)(\d{1,2})[.\-/ ]+(\d{1,2})[.\-/ ]+(\d{4}|\d{2})\b")
_AMOUNT_TOKEN_RE = re.compile(r"-?\d[\d.,]*")


def strip_code_fence(text: str) -> str:
    """Remove ``` / ```json markers the model may wrap around its JSON."""
    return _FENCE_RE.sub("", text or "").strip()


def parse_payload(text: str) -> Any:
    cleaned = strip_code_fence(text)
    try:
        return json.loads(cleaned)
    except ValueError:
        LOG.error("Failed to parse model response as JSON; first 500 chars: %r", (text or "")[:500])
        raise InvalidFormatError() from None


def unwrap_payload(raw: Any) -> Mapping[str, Any]:
    """Accept `{...}` or `[{...}]`; anything else is not a receipt payload."""
    if isinstance(raw, list) and len(raw) == 1:
        raw = raw[0]
    if not isinstance(raw, dict):
        LOG.error("Model response is %s, expected a JSON object", type(raw).__name__)
        raise InvalidFormatError()
    return raw


def _coerce_amount(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        m = _AMOUNT_TOKEN_RE.search(value)
        if not m:
            return 0.0
        # "kr." and sentence punctuation must not count as a separator
        s = m.group(0).rstrip(".,")
        if "," in s and "." in s:
            # whichever separator comes last is the decimal one
            if s.rfind(",") > s.rfind("."):
                s = s.replace(".", "").replace(",", ".")
            else:
                s = s.replace(",", "")
        elif "," in s:
            s = s.replace(",", ".")
        try:
            number = float(s)
        except ValueError:
            return 0.0
    else:
        return 0.0
    if not math.isfinite(number):
        return 0.0
    return round(number, 2)


def _to_year(raw: str) -> int:
    year = int(raw)
    return 2000 + year if len(raw) == 2 else year


def _coerce_date(value: Any, today: date) -> str:
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str) and value.strip():
        m = _ISO_DATE_RE.match(value)
        if m:
            year, month, day = (int(g) for g in m.groups())
        else:
            m = _DAY_FIRST_RE.search(value)
            if m:
                day, month = int(m.group(1)), int(m.group(2))
                year = _to_year(m.group(3))
        if m:
            try:
                return date(year, month, day).isoformat()
            except ValueError:
                pass
        LOG.warning("Unparseable purchase date %r; using today's date", value)
    return today.isoformat()


def _coerce_shop_name(value: Any) -> str:
    if value is None or isinstance(value, (dict, list)):
        return UNKNOWN_SHOP
    name = str(value).strip()
    return name or UNKNOWN_SHOP


def coerce_extracted(raw: Mapping[str, Any], *, today: Optional[date] = None) -> ExtractedData:
    return ExtractedData(
        shop_name=_coerce_shop_name(raw.get("shopName")),
        purchase_date=_coerce_date(raw.get("purchaseDate"), today or date.today()),
        total_amount=_coerce_amount(raw.get("totalAmount")),
        moms=_coerce_amount(raw.get("moms")),
    )


def extracted_from_text(text: Optional[str], *, provider_label: str, today: Optional[date] = None) -> ExtractedData:
    """Full pipeline from model text to coerced (not yet reconciled) data."""
    if not text or not text.strip():
        raise EmptyResponseError(provider_label)
    return coerce_extracted(unwrap_payload(parse_payload(text)), today=today)
