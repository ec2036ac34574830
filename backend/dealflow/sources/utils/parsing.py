"""Text helpers for pulling prices, merchants and stock state out of upstream markup."""

import re
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from bs4 import BeautifulSoup


_PRICE_IN_TEXT = re.compile(r"\$\s?(\d[\d,]*(?:\.\d{1,2})?)")
_ORIGINAL_PRICE = re.compile(
    r"\b(?:was|reg(?:ular)?\.?|orig(?:inal)?\.?|list(?:\s+price)?)[:\s]*\$\s?(\d[\d,]*(?:\.\d{1,2})?)",
    re.IGNORECASE,
)
_MERCHANT = re.compile(
    r"\b(?:at|from|via)\s+([A-Za-z][A-Za-z&'\s]*?)(?:\.|,|\s+-|\s*\[|\s*\(|$)",
    re.IGNORECASE,
)

_OUT_OF_STOCK = re.compile(r"out of stock|sold out|unavailable", re.IGNORECASE)
_LOW_STOCK = re.compile(r"\bonly\b.{0,40}?\bleft\b|low stock", re.IGNORECASE | re.DOTALL)


def clean_price_string(price_str: Optional[str]) -> Optional[Decimal]:
    """Convert a displayed price like "$1,299.99" or "1299 USD" into a Decimal.

    Args:
        price_str: Raw price text

    Returns:
        Decimal price, or None when no number can be recovered
    """
    if not price_str:
        return None

    cleaned = price_str.strip()
    for token in ("USD", "US$", "$", "€", "£"):
        cleaned = cleaned.replace(token, "")
    cleaned = cleaned.replace(",", "").strip()

    # "1299 - 1499" ranges: take the first number
    match = re.search(r"\d+(?:\.\d+)?", cleaned)
    if not match:
        return None

    try:
        return Decimal(match.group(0))
    except InvalidOperation:
        return None


def extract_price_from_text(text: Optional[str]) -> Optional[Decimal]:
    """Find the first dollar amount in free text."""
    if not text:
        return None
    match = _PRICE_IN_TEXT.search(text)
    if not match:
        return None
    return clean_price_string(match.group(1))


def extract_original_price(text: Optional[str]) -> Optional[Decimal]:
    """Find a "was $X" / "reg. $X" / "list $X" reference price in free text."""
    if not text:
        return None
    match = _ORIGINAL_PRICE.search(text)
    if not match:
        return None
    return clean_price_string(match.group(1))


def extract_merchant(text: Optional[str]) -> Optional[str]:
    """Find the store in phrases like "... $199 at Best Buy"."""
    if not text:
        return None
    match = _MERCHANT.search(text)
    if not match:
        return None
    merchant = " ".join(match.group(1).split())
    return merchant or None


def detect_stock_status(text: Optional[str]) -> str:
    """Classify page or snippet text as in_stock, low_stock or out_of_stock."""
    if not text:
        return "in_stock"
    if _OUT_OF_STOCK.search(text):
        return "out_of_stock"
    if _LOW_STOCK.search(text):
        return "low_stock"
    return "in_stock"


def html_to_text(markup: Optional[str]) -> str:
    """Flatten an HTML fragment into whitespace-collapsed text."""
    if not markup:
        return ""
    if "<" not in markup:
        return " ".join(markup.split())
    text = BeautifulSoup(markup, "html.parser").get_text(" ", strip=True)
    return " ".join(text.split())


def to_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError, OverflowError):
        return None


def to_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return None
