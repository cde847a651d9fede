from __future__ import annotations

from typing import Any, Dict


SYSTEM_PROMPT = """Extract the following details from this Danish receipt: Shop Name, Purchase Date, Total Amount, and MOMS (VAT).

CRITICAL DATE EXTRACTION RULE (DANISH CONVENTION):
Danish receipts strictly use the format: DAY MONTH YEAR (DD MM YY or DD MM YYYY).
Example: If the text says "23 12 25", this is the 23rd of December, 2025.
- You MUST return this as "2025-12-23".
- Never interpret the first number as a year.
- Always assume the order is [Day] [Month] [Year].

MOMS (VAT) RULE:
- In Denmark, MOMS is 25% of the Net Amount.
- Mathematically: Total Amount = MOMS * 5.
- If the Total equals MOMS * 4 you have extracted the Net Amount; use the gross Total instead.
- Prioritize the visually explicit "Total" or "At betale" line.

Return valid JSON with keys: "shopName", "purchaseDate" (YYYY-MM-DD), "totalAmount", "moms".
If a field is missing, return an empty string or 0."""


JSON_ONLY_SUFFIX = "\nReturn valid JSON object strictly. No prose, no markdown fences."


def build_prompt(*, strict_json: bool = False) -> str:
    return SYSTEM_PROMPT + (JSON_ONLY_SUFFIX if strict_json else "")


def receipt_schema() -> Dict[str, Any]:
    """JSON schema of the expected response (Gemini `responseSchema` dialect)."""
    return {
        "type": "OBJECT",
        "properties": {
            "shopName": {
                "type": "STRING",
                "description": "The name of the shop or company issuing the receipt.",
            },
            "purchaseDate": {
                "type": "STRING",
                "description": "The purchase date formatted strictly as YYYY-MM-DD.",
            },
            "totalAmount": {
                "type": "NUMBER",
                "description": "The total amount paid (gross, including MOMS).",
            },
            "moms": {
                "type": "NUMBER",
                "description": "The total VAT (MOMS) amount included in the receipt.",
            },
        },
        "required": ["shopName", "purchaseDate", "totalAmount", "moms"],
    }
