"""Locale-aware string and number helpers shared by extraction, history and savings code.

Everything here is pure: no I/O, no settings, no logging.
"""

from __future__ import annotations

import math
import re
import unicodedata
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable

_CURRENCY_TOKENS = re.compile(r"kr|sek|eur|usd", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")
# "1.299,50": dots group thousands when a decimal comma follows.
_DOT_GROUPED = re.compile(r"^-?\d{1,3}(?:\.\d{3})+,\d*$")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")

_ISO_DATE = re.compile(r"^(\d{4})[-/.](\d{1,2})[-/.](\d{1,2})$")
_EURO_DATE = re.compile(r"^(\d{1,2})[-/.](\d{1,2})[-/.](\d{2,4})$")

# Keywords up to this length only match as whole words ("if", "eon", "bank").
_SHORT_KEYWORD_LEN = 4


def fold(value: Any) -> str:
    """Lowercase and strip diacritics: ``"Försäkring"`` -> ``"forsakring"``."""
    text = str(value or "").strip().lower()
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def slug_token(value: Any) -> str:
    """Folded text with every non-alphanumeric run collapsed to ``-``."""
    return _NON_ALNUM.sub("-", fold(value)).strip("-")


def _keyword_regex(keyword: str) -> str:
    folded = re.escape(fold(keyword))
    if len(fold(keyword)) <= _SHORT_KEYWORD_LEN:
        return rf"\b{folded}\b"
    return folded


def compile_keywords(keywords: Iterable[str]) -> re.Pattern[str]:
    """Build one pattern matching any keyword against :func:`fold`-ed text."""
    parts = [_keyword_regex(word) for word in keywords if str(word).strip()]
    if not parts:
        return re.compile(r"(?!x)x")
    return re.compile("|".join(parts))


def has_keyword(text: Any, pattern: re.Pattern[str]) -> bool:
    return bool(pattern.search(fold(text)))


def clean_string(value: Any, fallback: str = "") -> str:
    if not isinstance(value, str):
        return fallback
    stripped = value.strip()
    return stripped or fallback


def is_empty_value(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, float):
        return not math.isfinite(value)
    return False


def to_number(value: Any) -> float | None:
    """Parse ``"1 299,50 kr"`` and ``"1.299,50"`` style amounts. Returns ``None`` for anything unusable."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else None
    if not isinstance(value, str):
        return None

    cleaned = _WHITESPACE.sub("", value)
    cleaned = _CURRENCY_TOKENS.sub("", cleaned)
    if _DOT_GROUPED.match(cleaned):
        cleaned = cleaned.replace(".", "")
    cleaned = cleaned.replace(",", ".", 1)
    if not cleaned:
        return None
    try:
        number = float(cleaned)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def round2(value: float | None) -> float:
    if value is None or not math.isfinite(value):
        return 0.0
    try:
        quantized = Decimal(repr(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return 0.0
    return float(quantized)


def clamp(value: float | None, lower: float, upper: float) -> float:
    if value is None or not math.isfinite(value):
        return lower
    return min(upper, max(lower, value))


def normalize_date(value: Any) -> date | None:
    """Accept ``YYYY-MM-DD`` (``-``, ``/`` or ``.``) and day-first European dates."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None

    match = _ISO_DATE.match(text)
    if match:
        year, month, day = match.groups()
    else:
        match = _EURO_DATE.match(text)
        if not match:
            return None
        day, month, year = match.groups()
        if len(year) == 2:
            year = f"20{year}"
        elif len(year) == 3:
            return None
    try:
        return date(int(year), int(month), int(day))
    except ValueError:
        return None


def to_date(value: Any) -> date | None:
    """Like :func:`normalize_date` but also takes ISO timestamps (``scanned_at`` etc.)."""
    parsed = normalize_date(value)
    if parsed is not None or not isinstance(value, str):
        return parsed
    try:
        return datetime.fromisoformat(value.strip()).date()
    except ValueError:
        return None


def format_number(value: float | None, fallback: str = "") -> str:
    """Swedish grouping: ``1500.5`` -> ``"1 500,5"`` (at most two decimals)."""
    number = to_number(value)
    if number is None:
        return fallback
    rounded = round2(number)
    sign = "-" if rounded < 0 else ""
    integer_part, _, decimals = f"{abs(rounded):.2f}".partition(".")
    grouped = f"{int(integer_part):,}".replace(",", " ")
    decimals = decimals.rstrip("0")
    return f"{sign}{grouped},{decimals}" if decimals else f"{sign}{grouped}"


def format_amount(value: float | None, currency: str = "SEK", fallback: str = "") -> str:
    formatted = format_number(value)
    if not formatted:
        return fallback
    return f"{formatted} {currency or 'SEK'}"
