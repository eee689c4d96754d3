"""
Tolerant amount and date parsing shared by the extraction strategies.

Amounts:
- European:  1.234,56   1234,56   -12,30
- English:   1,234.56   1234.56   -12.30
- Trailing minus / parentheses:  12,30-   (12.30)
- Currency noise:  EUR 12,30   12.30 €   1'234.50

A single separator is the decimal separator; a repeated one is a thousands
separator; with both present the last one is the decimal separator.
"""

import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

_AMOUNT_NOISE = re.compile(r"[^\d.,\-+()]")
_PLAIN_NUMBER = re.compile(r"^\d+(\.\d+)?$")

DATE_FORMATS = [
    "%Y-%m-%d",  # 2024-11-18
    "%d.%m.%Y",  # 18.11.2024
    "%d.%m.%Y.",  # 18.11.2024. (Croatian)
    "%d/%m/%Y",  # 18/11/2024
    "%d-%m-%Y",  # 18-11-2024
    "%Y%m%d",  # 20241118 (common in XML)
    "%d.%m.%y",  # 18.11.24
    "%Y/%m/%d",  # 2024/11/18
]


def parse_amount(value: Any) -> Decimal:
    """
    Parse an amount in European or English notation to Decimal.

    Raises:
        ValueError: If the value is not a recognizable amount
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return Decimal(repr(value)) if isinstance(value, float) else Decimal(value)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"invalid amount {value!r}")

    raw = value.strip()
    cleaned = _AMOUNT_NOISE.sub("", raw.replace(" ", "").replace("'", ""))

    negative = False
    if cleaned.startswith("(") and cleaned.endswith(")"):
        negative = True
        cleaned = cleaned[1:-1]
    if cleaned.endswith("-"):
        negative = True
        cleaned = cleaned[:-1]
    elif cleaned.endswith("+"):
        cleaned = cleaned[:-1]
    if cleaned.startswith("-"):
        negative = not negative
        cleaned = cleaned[1:]
    elif cleaned.startswith("+"):
        cleaned = cleaned[1:]

    if "," in cleaned and "." in cleaned:
        if cleaned.rfind(",") > cleaned.rfind("."):
            # 1.234,56
            cleaned = cleaned.replace(".", "").replace(",", ".")
        else:
            # 1,234.56
            cleaned = cleaned.replace(",", "")
    elif cleaned.count(",") > 1:
        cleaned = cleaned.replace(",", "")
    elif cleaned.count(".") > 1:
        cleaned = cleaned.replace(".", "")
    else:
        cleaned = cleaned.replace(",", ".")

    if not _PLAIN_NUMBER.match(cleaned):
        raise ValueError(f"invalid amount {raw!r}")
    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        raise ValueError(f"invalid amount {raw!r}")
    return -amount if negative else amount


def safe_amount(value: Any) -> Optional[Decimal]:
    """parse_amount that returns None instead of raising."""
    if value is None or value == "":
        return None
    try:
        return parse_amount(value)
    except ValueError:
        return None


def parse_date(value: Any) -> Optional[str]:
    """Parse a date string to ISO format YYYY-MM-DD (None if unparseable)."""
    if not value or not isinstance(value, str):
        return None

    value = value.strip()
    # ISO datetime: 2024-11-18T10:00:00+01:00
    if re.match(r"^\d{4}-\d{2}-\d{2}[T ]", value):
        value = value[:10]

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).strftime("%Y-%m-%d")
        except ValueError:
            continue
    return None
