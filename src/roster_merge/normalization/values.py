"""Value normalization used for comparison and indexing.

Every normalizer here is idempotent: feeding its output back in returns the
same string. The normalized forms are only ever used to *compare* values;
merged records keep the original values.

- Dates (``date``/``datetime``, ISO strings, ``DD/MM/YYYY``) → ``YYYY-MM-DD``
- Numbers (including ``"500,000"``, ``"1.234,5"``, ``"12 500"``) → canonical
  decimal string without exponent or trailing zeros
- Text → punctuation stripped, whitespace collapsed, lower-cased, trimmed
"""

from __future__ import annotations

import re
import unicodedata
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

# Thin spaces and no-break spaces show up as thousands separators in exports
_SPACE_CHARS = (" ", "\u00a0", "\u202f", "\u2009")

_ISO_DATE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})(?:[T ][0-9:.]+(?:Z|[+-]\d{2}:?\d{2})?)?$")
_DMY_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")

_PLAIN_NUMBER = re.compile(r"^[+-]?\d+(?:\.\d+)?$")
_COMMA_THOUSANDS = re.compile(r"^[+-]?\d{1,3}(?:,\d{3})+(?:\.\d+)?$")
_DOT_THOUSANDS = re.compile(r"^[+-]?\d{1,3}(?:(?:\.\d{3}){2,}(?:,\d+)?|\.\d{3},\d+)$")
_COMMA_DECIMAL = re.compile(r"^[+-]?\d+,\d+$")


def is_empty(value: Any) -> bool:
    """True for ``None``, the empty string and whitespace-only strings."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def parse_date(value: Any) -> date | None:
    """Parse a calendar date from a date, datetime or common string form."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None

    text = value.strip()
    m = _ISO_DATE.match(text)
    if m:
        year, month, day = int(m.group(1)), int(m.group(2)), int(m.group(3))
    else:
        m = _DMY_DATE.match(text)
        if not m:
            return None
        day, month, year = int(m.group(1)), int(m.group(2)), int(m.group(3))

    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_number(value: Any) -> Decimal | None:
    """Parse a number from a numeric value or a formatted string.

    Digit strings with a leading zero (``"0701020304"``) are identifiers,
    not numbers, and return ``None``.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            return None
        return Decimal(repr(value))
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if not isinstance(value, str):
        return None

    text = value.strip()
    for ch in _SPACE_CHARS:
        text = text.replace(ch, "")
    if not text:
        return None

    if _PLAIN_NUMBER.match(text):
        pass
    elif _COMMA_THOUSANDS.match(text):
        text = text.replace(",", "")
    elif _DOT_THOUSANDS.match(text):
        text = text.replace(".", "").replace(",", ".")
    elif _COMMA_DECIMAL.match(text):
        text = text.replace(",", ".")
    else:
        return None

    digits = text.lstrip("+-")
    if len(digits) > 1 and digits[0] == "0" and digits[1].isdigit():
        return None

    try:
        return Decimal(text)
    except InvalidOperation:
        return None


def format_number(number: Decimal) -> str:
    """Canonical decimal string: no exponent, no trailing zeros."""
    if number == 0:
        return "0"
    normalized = number.normalize()
    return format(normalized, "f")


def to_number(number: Decimal) -> int | float:
    """Convert a parsed decimal to the plain Python number stored on records."""
    if number == number.to_integral_value():
        return int(number)
    return float(number)


def normalize_text(value: str) -> str:
    """Strip punctuation, collapse whitespace, lower-case and trim."""
    stripped = "".join(ch for ch in value if not unicodedata.category(ch).startswith("P"))
    return " ".join(stripped.split()).lower()


def normalize_value(value: Any) -> str:
    """Normalize any field value to its comparison form.

    Args:
        value: A raw or already-normalized field value.

    Returns:
        The comparison string. Empty values normalize to ``""``.
    """
    if is_empty(value):
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (date, datetime)):
        return parse_date(value).isoformat()  # type: ignore[union-attr]
    if isinstance(value, (int, float, Decimal)):
        number = parse_number(value)
        return format_number(number) if number is not None else normalize_text(str(value))

    text = str(value)
    parsed_date = parse_date(text)
    if parsed_date is not None:
        return parsed_date.isoformat()
    number = parse_number(text)
    if number is not None:
        return format_number(number)
    return normalize_text(text)


def strip_diacritics(value: str) -> str:
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_name(value: str) -> str:
    """Token-sorted, accent-free, lower-cased name.

    ``"KOUASSI Jean"`` and ``"Jean KOUASSI"`` normalize identically. Two
    different people whose names hold the same tokens in a different order
    collide too; that approximation is accepted.
    """
    tokens = strip_diacritics(value).lower().split()
    return " ".join(sorted(tokens))


def normalize_phone(value: str) -> str:
    """Drop whitespace, punctuation and the international ``+`` from a phone number."""
    return "".join(
        ch
        for ch in value
        if ch != "+" and not ch.isspace() and not unicodedata.category(ch).startswith("P")
    )


def normalize_email(value: str) -> str:
    return value.strip().lower()


def normalize_business_number(value: str) -> str:
    return value.strip().upper()


def normalize_cnps(value: str) -> str:
    return "".join(value.split())
