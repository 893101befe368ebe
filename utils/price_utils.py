"""
Price parsing and KES formatting for model-generated product prices
"""

import math
import re
from typing import Optional, Union

KES_MARKERS = ("ksh", "kes", "kshs", "shilling")
USD_MARKERS = ("$", "usd", "dollar")

_NUMBER_RE = re.compile(r"\d[\d,]*(?:\.\d+)?")


def _first_number(text: str) -> Optional[float]:
    match = _NUMBER_RE.search(text)
    if not match:
        return None
    try:
        return float(match.group(0).replace(",", ""))
    except ValueError:
        return None


def to_kes(price: Union[str, int, float, None], usd_rate: float) -> Optional[int]:
    """
    Convert a model price to whole Kenyan shillings

    "$38" / "38 USD" are converted at usd_rate; "Ksh 2,500", "KES 2500" and
    bare numbers are already shillings. For ranges the first figure is used.

    Returns:
        Price in KES, or None when no figure can be read
    """
    if price is None or isinstance(price, bool):
        return None
    if isinstance(price, (int, float)):
        if math.isnan(price) or price < 0:
            return None
        return int(round(price))

    text = str(price).strip().lower()
    amount = _first_number(text)
    if amount is None:
        return None

    is_kes = any(marker in text for marker in KES_MARKERS)
    is_usd = not is_kes and any(marker in text for marker in USD_MARKERS)
    if is_usd:
        return int(round(amount * usd_rate))
    return int(round(amount))


def format_kes(amount: int) -> str:
    """Format as "Ksh 65,000" """
    return f"Ksh {amount:,}"


def normalize_price_text(price: Union[str, int, float, None], usd_rate: float) -> Optional[str]:
    """Display form of a price in KES; unparseable text is returned unchanged"""
    kes = to_kes(price, usd_rate)
    if kes is None:
        return str(price) if price not in (None, "") else None
    return format_kes(kes)
