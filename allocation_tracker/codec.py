"""Parsing and display of per-month allocation fractions entered by users."""

from __future__ import annotations

import re
import unicodedata
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional

from .models import ALLOCATION_CEILING

Q2 = Decimal("0.01")
_CEILING = Decimal(str(ALLOCATION_CEILING))
_NUMBER_RE = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?", re.ASCII)


def normalize_input(text: str) -> str:
    # NFKC folds full-width digits and the full-width period to ASCII.
    return unicodedata.normalize("NFKC", text).strip()


def parse_allocation_input(text: str) -> Optional[float]:
    """Parse a user-entered fraction into a value in [0.00, 1.00].

    Returns ``None`` for invalid input and ``0.0`` for an empty string.
    Rounding to 0.01 is half-up on the decimal text, so "0.005" gives 0.01,
    "0.995" gives 1.00 and "1.005" rounds to 1.01 and is rejected.
    """
    normalized = normalize_input(text)
    if normalized == "":
        return 0.0
    if not _NUMBER_RE.fullmatch(normalized):
        return None
    try:
        parsed = Decimal(normalized)
        if not parsed.is_finite() or parsed < 0:
            return None
        rounded = parsed.quantize(Q2, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        # malformed text, or too large to quantize
        return None
    if rounded > _CEILING:
        return None
    return float(abs(rounded))


def format_allocation_value(value: float) -> str:
    return f"{value:.2f}"
