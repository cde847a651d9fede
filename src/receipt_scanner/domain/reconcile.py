"""Danish VAT (moms) reconciliation of extracted receipt totals.

Moms is 25% of the net amount, so the gross total always equals moms * 5
and the net equals moms * 4. Vision models regularly pick the net line or
misread a digit; this module corrects the total where the evidence is clear
and leaves it alone where the receipt may legitimately differ (mixed rates).
"""

from __future__ import annotations

from dataclasses import replace
from enum import Enum

from ..logging import get_logger
from .models import ExtractedData


LOG = get_logger("reconcile")

TOTAL_PER_MOMS = 5
NET_PER_MOMS = 4

# Differences up to this many DKK are treated as already consistent.
CONSISTENT_TOLERANCE = 0.10
# Total within this distance of moms * 4 is taken to be the net amount.
NET_MATCH_TOLERANCE = 1.00
# Remaining differences below this are rounding/OCR slips.
ROUNDING_TOLERANCE = 2.00


class Correction(str, Enum):
    NOT_APPLICABLE = "not_applicable"
    INFERRED_FROM_MOMS = "inferred_from_moms"
    CONSISTENT = "consistent"
    NET_AMOUNT_FIXED = "net_amount_fixed"
    ROUNDING_FIXED = "rounding_fixed"
    DISCREPANCY_KEPT = "discrepancy_kept"


def classify(total_amount: float, moms: float) -> Correction:
    """Decide which correction applies; the order of checks is significant."""
    if not moms or moms <= 0:
        return Correction.NOT_APPLICABLE
    if not total_amount or total_amount <= 0:
        return Correction.INFERRED_FROM_MOMS

    expected_total = moms * TOTAL_PER_MOMS
    expected_net = moms * NET_PER_MOMS
    diff = abs(total_amount - expected_total)

    if diff <= CONSISTENT_TOLERANCE:
        return Correction.CONSISTENT
    # Checked before the rounding band: a net match is usually inside it too.
    if abs(total_amount - expected_net) < NET_MATCH_TOLERANCE:
        return Correction.NET_AMOUNT_FIXED
    if diff < ROUNDING_TOLERANCE:
        return Correction.ROUNDING_FIXED
    return Correction.DISCREPANCY_KEPT


def reconcile(data: ExtractedData) -> ExtractedData:
    """Return a copy of data with total_amount brought in line with moms * 5."""
    outcome = classify(data.total_amount, data.moms)
    if outcome in (Correction.NOT_APPLICABLE, Correction.CONSISTENT):
        return data

    expected_total = round(data.moms * TOTAL_PER_MOMS, 2)
    if outcome is Correction.DISCREPANCY_KEPT:
        LOG.warning(
            "Major discrepancy: total %.2f != moms * 5 (%.2f); keeping extracted value",
            data.total_amount,
            expected_total,
        )
        return data

    if outcome is Correction.INFERRED_FROM_MOMS:
        LOG.info("Missing total amount; inferred %.2f from moms", expected_total)
    elif outcome is Correction.NET_AMOUNT_FIXED:
        LOG.info("Total %.2f looked like the net amount; corrected to %.2f", data.total_amount, expected_total)
    else:
        LOG.info("Minor discrepancy; total %.2f corrected to %.2f", data.total_amount, expected_total)
    return replace(data, total_amount=expected_total)
