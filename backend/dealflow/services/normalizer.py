"""Raw offer to canonical offer normalization.

Everything here is a pure function of the raw offer and the curated tables:
the same input always yields the same CanonicalOffer and the same
fingerprint, byte for byte.
"""

import re
import string
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, Optional

import structlog

from dealflow.config import TablesConfig
from dealflow.core.exceptions import MalformedOfferError
from dealflow.domain.offers import CONDITIONS, STOCK_STATUSES, CanonicalOffer, RawOffer

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")

# Title cleaning
_PROMO_PREFIX = re.compile(r"^(?:NEW|SALE|HOT|LIMITED|EXCLUSIVE)[\s\-:!]+", re.IGNORECASE)
_PROMO_SUFFIX = re.compile(
    r"[\s\-]+(?:sale|deal|offer|promo|discount|clearance)[!.]*$", re.IGNORECASE
)
_BRACKETS = re.compile(r"\[[^\]]*\]")
_PROMO_PARENS = re.compile(
    r"\((?:sale|deal|offer|promo|new|save\s*\$?\d+%?)\)", re.IGNORECASE
)
_WHITESPACE = re.compile(r"\s+")

# Model codes, tried in order
_MODEL_PATTERNS = (
    re.compile(r"\bmodel\s*(?:no\.?|number)?\s*[:#]?\s*([A-Z0-9][A-Z0-9\-]*\d[A-Z0-9\-]*)", re.IGNORECASE),
    re.compile(r"\b([A-Z]{1,3}\d{2,5}[A-Z0-9\-]*)"),
    re.compile(r"\b(\d{3,5}[A-Z]{1,3})\b"),
)

_FINGERPRINT_TOKEN = re.compile(r"[a-z0-9]+")
_TITLE_WORD_SPLIT = re.compile(r"[\s\-]+")
_CURRENCY = re.compile(r"^[A-Z]{3}$")

MAX_FINGERPRINT_TOKENS = 5
MAX_BRAND_LENGTH = 15


def titlecase_word(word: str) -> str:
    """Titlecase a word, preserving short all-caps tokens such as SSD or 4K."""
    if word == word.upper() and len(word) <= 5:
        return word
    return word[:1].upper() + word[1:].lower()


def clean_title(title: str) -> str:
    """Strip promotional noise and titlecase. Repeats until nothing changes."""
    current = title or ""
    for _ in range(10):
        text = _BRACKETS.sub(" ", current)
        text = _PROMO_PARENS.sub(" ", text)
        text = _WHITESPACE.sub(" ", text).strip()
        text = _PROMO_PREFIX.sub("", text)
        text = _PROMO_SUFFIX.sub("", text)
        text = " ".join(titlecase_word(word) for word in text.split())
        if text == current:
            break
        current = text
    return current


def compute_fingerprint(brand: str, model: Optional[str], title: str) -> str:
    """Build the product identity key ``brand::model::tokens``.

    Tokens are the first five purely alphanumeric words of the normalized
    title longer than three characters, sorted. Empty parts are skipped.
    """
    tokens = [
        token
        for token in title.lower().split()
        if len(token) > 3 and _FINGERPRINT_TOKEN.fullmatch(token)
    ][:MAX_FINGERPRINT_TOKENS]

    parts = [brand.lower(), (model or "").lower(), "-".join(sorted(tokens))]
    return "::".join(part for part in parts if part)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_price(value: Any, field: str = "current_price") -> Decimal:
    """Turn an upstream price value into a non-negative Decimal rounded to cents.

    Raises:
        MalformedOfferError: If the value is missing, non-numeric, non-finite or negative
    """
    if value is None:
        raise MalformedOfferError("missing price", field)
    if isinstance(value, bool):
        raise MalformedOfferError("non-numeric price", field)

    try:
        if isinstance(value, Decimal):
            price = value
        elif isinstance(value, int):
            price = Decimal(value)
        elif isinstance(value, float):
            price = Decimal(repr(value))
        elif isinstance(value, str):
            text = value.strip().replace(",", "")
            if text.startswith("$"):
                text = text[1:].strip()
            price = Decimal(text)
        else:
            raise MalformedOfferError("non-numeric price", field)
    except InvalidOperation:
        raise MalformedOfferError(f"non-numeric price {value!r}", field) from None

    if not price.is_finite():
        raise MalformedOfferError("non-finite price", field)
    if price < 0:
        raise MalformedOfferError("negative price", field)
    return price.quantize(CENT, rounding=ROUND_HALF_UP)


def discount_percent(current: Decimal, original: Optional[Decimal]) -> Optional[int]:
    """Whole-percent discount, or None unless original is above current."""
    if original is None or original <= current:
        return None
    percent = (Decimal(100) * (original - current) / original).quantize(
        Decimal(1), rounding=ROUND_HALF_UP
    )
    return max(0, min(100, int(percent)))


class Normalizer:
    """Maps RawOffers onto the canonical schema using the curated tables."""

    def __init__(self, tables: Optional[TablesConfig] = None):
        self.tables = tables or TablesConfig()
        self._brand_index: Dict[str, str] = {}
        for canonical, aliases in self.tables.brand_aliases.items():
            self._brand_index[canonical.lower()] = canonical
            for alias in aliases:
                self._brand_index[alias.strip().lower()] = canonical
        self.malformed_count = 0

    # ------------------------------------------------------------------
    # Field canonicalization
    # ------------------------------------------------------------------

    def extract_brand(self, raw_brand: Optional[str], raw_title: str, cleaned_title: str) -> str:
        if raw_brand and raw_brand.strip():
            hit = self._brand_index.get(raw_brand.strip().lower())
            if hit:
                return hit

        for word in _TITLE_WORD_SPLIT.split(raw_title):
            hit = self._brand_index.get(word.lower())
            if hit:
                return hit

        if raw_brand and raw_brand.strip():
            candidate = raw_brand.strip()
        else:
            candidate = cleaned_title.split()[0] if cleaned_title else ""
        if candidate and candidate[0].isupper() and len(candidate) <= MAX_BRAND_LENGTH:
            return candidate
        return "Unknown"

    @staticmethod
    def extract_model(raw_title: str) -> Optional[str]:
        for pattern in _MODEL_PATTERNS:
            match = pattern.search(raw_title)
            if match:
                return match.group(1).strip("-")
        return None

    def canonical_category(self, raw_category: str) -> str:
        key = (raw_category or "").strip().lower()
        if not key:
            return "Uncategorized"
        for pattern, hierarchy in self.tables.categories.items():
            if pattern.lower() in key:
                return hierarchy
        return string.capwords(raw_category.strip())

    def canonical_marketplace(self, merchant: str) -> str:
        key = (merchant or "").strip().lower()
        if not key:
            return "Unknown"
        for pattern, name in self.tables.marketplaces.items():
            if pattern.lower() in key:
                return name
        return merchant.strip()

    # ------------------------------------------------------------------
    # Normalization
    # ------------------------------------------------------------------

    def normalize(self, raw: RawOffer) -> CanonicalOffer:
        """Normalize one raw offer.

        Raises:
            MalformedOfferError: If the offer cannot be represented canonically
        """
        title = clean_title(raw.title)
        if not title:
            raise MalformedOfferError("empty title after cleaning", "title")

        current = parse_price(raw.current_price)

        currency = str(raw.currency or "").strip().upper()
        if not _CURRENCY.match(currency):
            raise MalformedOfferError(f"unparseable currency {raw.currency!r}", "currency")

        condition = str(raw.condition or "new").strip().lower().replace(" ", "-")
        if condition not in CONDITIONS:
            raise MalformedOfferError(f"unknown condition {raw.condition!r}", "condition")

        original = None
        if raw.original_price is not None:
            try:
                original = parse_price(raw.original_price, "original_price")
            except MalformedOfferError:
                original = None
            if original is not None and original < current:
                original = None

        stock_status = raw.stock_status if raw.stock_status in STOCK_STATUSES else (
            "in_stock" if raw.in_stock else "out_of_stock"
        )

        brand = self.extract_brand(raw.brand, raw.title, title)
        model = self.extract_model(raw.title)

        return CanonicalOffer(
            external_id=str(raw.external_id),
            source=raw.source,
            title=title,
            brand=brand,
            model=model,
            category=self.canonical_category(raw.category),
            marketplace=self.canonical_marketplace(raw.merchant),
            current_price=current,
            currency=currency,
            fingerprint=compute_fingerprint(brand, model, title),
            original_price=original,
            discount_percent=discount_percent(current, original),
            description=raw.description,
            image_url=raw.image_url,
            url=raw.url,
            condition=condition,
            in_stock=raw.in_stock and stock_status != "out_of_stock",
            stock_status=stock_status,
            rating=raw.rating,
            review_count=raw.review_count,
            seller_rating=raw.seller_rating,
            views=raw.views,
            saves=raw.saves,
            listed_at=_aware(raw.listed_at),
            fetched_at=_aware(raw.fetched_at),
            raw_title=raw.title,
            raw_brand=raw.brand,
            raw_category=raw.category or "",
            raw_merchant=raw.merchant or "",
        )

    def try_normalize(self, raw: RawOffer) -> Optional[CanonicalOffer]:
        """Normalize, returning None (and counting the drop) for malformed offers."""
        try:
            return self.normalize(raw)
        except MalformedOfferError as e:
            self.malformed_count += 1
            logger.info(
                "offer_malformed",
                source=raw.source,
                external_id=raw.external_id,
                field=e.field,
                reason=e.reason,
            )
            return None
