"""
Price helpers shared by every target adapter.

All helpers are pure and total: anything that cannot be read as a price is
treated as absent (None) rather than raising.
"""
import re
import uuid
from typing import Optional

from shared.constants import CURRENCY_SYMBOL

# Leading numeric token after the currency symbol: "₹1,299.50 MRP" -> "1,299.50"
_CURRENCY_RE = re.compile(r"₹\s*(\d[\d,]*(?:\.\d+)?)")
# A bare number with nothing else around it: "45", " 1,299 "
_BARE_NUMBER_RE = re.compile(r"^\s*(\d[\d,]*(?:\.\d+)?)\s*$")


def parse_price(val) -> Optional[float]:
    """
    Read a price from a number or a currency-marked string.

    >>> parse_price("₹1,299")
    1299.0
    >>> parse_price("Price Not Available") is None
    True
    """
    if val is None or isinstance(val, bool):
        return None
    if isinstance(val, (int, float)):
        return float(val) if val >= 0 else None
    text = str(val)
    m = _CURRENCY_RE.search(text) or _BARE_NUMBER_RE.match(text)
    if not m:
        return None
    try:
        return float(m.group(1).replace(",", ""))
    except ValueError:
        return None


def format_price(val: float) -> str:
    """₹45 for whole amounts, ₹45.50 otherwise."""
    if float(val).is_integer():
        return f"{CURRENCY_SYMBOL}{val:,.0f}"
    return f"{CURRENCY_SYMBOL}{val:,.2f}"


def price_text(val, default: Optional[str] = None) -> Optional[str]:
    """Normalise a raw price (number or text) into a currency-prefixed string."""
    if isinstance(val, str) and CURRENCY_SYMBOL in val:
        return val.strip()
    parsed = parse_price(val)
    if parsed is None:
        return default
    return format_price(parsed)


def compute_savings(price, original_price) -> Optional[str]:
    """
    original - current, currency-prefixed.

    None unless both sides parse and the original is strictly higher.
    """
    current = parse_price(price)
    original = parse_price(original_price)
    if current is None or original is None or original <= current:
        return None
    return format_price(round(original - current, 2))


def discount_label(price, original_price) -> Optional[str]:
    """'20% OFF' derived from the two prices, or None."""
    current = parse_price(price)
    original = parse_price(original_price)
    if current is None or not original or original <= current:
        return None
    pct = (original - current) / original * 100
    return f"{pct:.0f}% OFF"


def new_product_id(target: str) -> str:
    """Identifier for entries the source did not give one."""
    return f"{target}_{uuid.uuid4().hex[:12]}"
