"""
Value canonicalization shared by the diff and validation engines.

Spreadsheet cells and database columns disagree on how "empty" looks
(None, "", "   ", NaN) and on number types (2015 vs 2015.0). Every equality
check between a file row and a store row goes through canonical_value().
"""

import math
import re
from typing import Any, Optional

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def is_blank(value: Any) -> bool:
    """True for None, NaN and strings that are empty after trimming."""
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    if isinstance(value, str) and value.strip() == "":
        return True
    return False


def canonical_value(value: Any) -> Any:
    """
    Canonical form used for comparisons.

    - None / NaN / "" / whitespace → None
    - strings are trimmed
    - integral floats become ints (2015.0 → 2015)
    - bools pass through unchanged

    Examples:
        canonical_value("  MAZA ") → "MAZA"
        canonical_value("") → None
        canonical_value(2015.0) → 2015
    """
    if is_blank(value):
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        return value.strip()
    return value


def canonical_text(value: Any) -> Optional[str]:
    """canonical_value() rendered as a string, for text columns."""
    value = canonical_value(value)
    if value is None:
        return None
    return str(value)


def normalize_sku(sku: Any) -> Optional[str]:
    """
    Normalize an ACR SKU for lookups.

    SKUs are matched case-insensitively: " acr100 " → "ACR100".
    """
    text = canonical_text(sku)
    if text is None:
        return None
    return text.upper()


def normalize_key_part(value: Any) -> str:
    """Case-insensitive component of a composite business key."""
    text = canonical_text(value)
    return text.upper() if text is not None else ""


def coerce_year(value: Any) -> Any:
    """
    Coerce a year cell to int when it holds an integral number.

    Anything else is returned unchanged (canonicalized) so validation can
    report it as an invalid number.
    """
    value = canonical_value(value)
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, str) and re.fullmatch(r"[+-]?\d+(\.0+)?", value):
        return int(float(value))
    return value


def is_uuid(value: Any) -> bool:
    """True if the value is a UUID string (any case)."""
    text = canonical_text(value)
    return bool(text and UUID_PATTERN.match(text))
