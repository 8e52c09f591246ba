"""Utility helpers for normalising scraped product text values.

Everything here is deterministic and side-effect free; both extraction
strategies funnel raw card text through :func:`build_product`.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Iterable

from speedsale.schemas import ScrapedProduct

if TYPE_CHECKING:
    from speedsale.extractors.base import RawCard
    from speedsale.retailers.profiles import RetailerProfile

UNKNOWN_BRAND = "Unknown"

KNOWN_BRANDS: tuple[str, ...] = (
    "Under Armour", "Topo Athletic", "New Balance", "Salomon", "Skechers",
    "Nike", "Adidas", "Asics", "Puma", "Reebok", "Saucony", "Brooks",
    "Hoka", "On", "Mizuno", "Altra", "Newton", "Inov8", "Scarpa", "True Motion",
    "Merrell", "Scott", "NNormal", "La Sportiva", "VJ Sport", "Norda",
    "The North Face", "Veja", "Vibram", "RonHill", "OOFOS",
)

PROMO_PREFIXES: tuple[str, ...] = (
    "Free Premium Delivery",
    "Free Express Delivery",
    "Free Next Day Delivery",
    "Free Delivery",
)

# Order matters: longer phrases first so the shortest match never wins.
CATEGORY_PHRASES: tuple[str, ...] = (
    "Walking Boots",
    "Walking Boot",
    "Running Spikes",
    "Throwing Shoes",
    "Cross Country Spikes",
    "Distance Spikes",
    "Multi-Event Spikes",
    "Sprint Spikes",
    "Men's Trail Running Shoes",
    "Women's Trail Running Shoes",
    "Men's Running Shoes",
    "Women's Running Shoes",
    "Trail Running Shoes",
    "Running Shoes",
    "Men's Training Shoes",
    "Women's Training Shoes",
    "Training Shoes",
)

_CURRENCY_TAIL_RE = re.compile(r"\s*[£$€].*$", re.S)
_SEASON_CODE_RE = re.compile(r"\s+-\s*(?:AW|FA|SS)\d{2}\s*$", re.I)
_PHRASE_RES = tuple(
    re.compile(rf"\s+{re.escape(phrase)}.*$", re.I | re.S) for phrase in CATEGORY_PHRASES
)
_PROMO_RES = tuple(re.compile(rf"^{re.escape(prefix)}\s+", re.I) for prefix in PROMO_PREFIXES)
_PRICE_TOKEN_RE = re.compile(r"\d[\d.,]*")
_THOUSANDS_ONLY_RE = re.compile(r"^\d{1,3}(?:,\d{3})+$")
_WHITESPACE_RE = re.compile(r"\s+")


def parse_price(text: str | None) -> float:
    """Parse a price-like string, returning ``0.0`` when it is unusable.

    The first numeric token is used so ``"£89.99 RRP £129.99"`` yields 89.99.
    A comma is treated as the decimal separator when it is the only separator
    and is not grouping thousands (``"12,50"`` -> 12.5, ``"1,299"`` -> 1299).
    """

    if not text:
        return 0.0

    match = _PRICE_TOKEN_RE.search(text)
    if not match:
        return 0.0

    token = match.group(0).rstrip(".,")
    if "," in token and "." in token:
        if token.rfind(",") > token.rfind("."):
            token = token.replace(".", "").replace(",", ".")
        else:
            token = token.replace(",", "")
    elif "," in token:
        if _THOUSANDS_ONLY_RE.match(token):
            token = token.replace(",", "")
        else:
            token = token.replace(",", ".")

    try:
        value = float(token)
    except ValueError:
        return 0.0

    return value if value > 0 else 0.0


def infer_brand(name: str | None, brands: Iterable[str] = KNOWN_BRANDS) -> str:
    """Return the best known brand for a product name.

    The longest brand at the start of the name wins; failing that, the longest
    brand appearing as a whole word anywhere; failing that ``"Unknown"``.
    """

    if not name:
        return UNKNOWN_BRAND

    lowered = name.strip().lower()
    prefix_match = ""
    word_match = ""
    for brand in brands:
        brand_lower = brand.lower()
        if lowered == brand_lower or lowered.startswith(brand_lower + " "):
            if len(brand) > len(prefix_match):
                prefix_match = brand
        elif re.search(rf"(?<![a-z0-9]){re.escape(brand_lower)}(?![a-z0-9])", lowered):
            if len(brand) > len(word_match):
                word_match = brand

    return prefix_match or word_match or UNKNOWN_BRAND


def clean_name(name: str | None) -> str:
    """Strip delivery promos, prices, category phrases and season codes."""

    cleaned = _WHITESPACE_RE.sub(" ", name or "").strip()

    for pattern in _PROMO_RES:
        cleaned = pattern.sub("", cleaned)

    cleaned = _CURRENCY_TAIL_RE.sub("", cleaned)

    for pattern in _PHRASE_RES:
        cleaned = pattern.sub("", cleaned)

    cleaned = _SEASON_CODE_RE.sub("", cleaned)
    return cleaned.strip()


def strip_brand(name: str, brand: str) -> str:
    """Return *name* without a leading *brand*."""

    if brand and brand != UNKNOWN_BRAND and name.lower().startswith(brand.lower()):
        return name[len(brand):].strip()
    return name.strip()


def slugify(text: str | None) -> str:
    """Lowercase, drop non-alphanumerics, hyphenate whitespace."""

    lowered = (text or "").lower()
    lowered = re.sub(r"[^a-z0-9\s]", "", lowered)
    lowered = re.sub(r"\s+", "-", lowered)
    lowered = re.sub(r"-+", "-", lowered)
    return lowered.strip("-")


def product_slug(brand: str | None, model: str | None) -> str:
    """Slug for the cleaned ``brand + model`` text of a product."""

    parts = [part.strip() for part in (brand, model) if part and part.strip()]
    return slugify(" ".join(parts))


def compute_discount(price: float | None, original_price: float | None) -> float | None:
    """Percentage off, or ``None`` unless the original price is strictly higher."""

    if not price or not original_price:
        return None
    if price <= 0 or original_price <= price:
        return None
    return (original_price - price) / original_price * 100


def is_valid_product(product: ScrapedProduct) -> bool:
    """A product is eligible for reconciliation only with all core fields."""

    return bool(
        product.name
        and product.brand
        and product.price
        and product.price > 0
        and product.product_url
    )


def build_product(
    profile: "RetailerProfile",
    card: "RawCard",
    *,
    category: str | None = None,
) -> ScrapedProduct | None:
    """Turn raw card text into a normalised :class:`ScrapedProduct`.

    Returns ``None`` when the card lacks a name, a usable price or a link.
    """

    raw_name = _WHITESPACE_RE.sub(" ", card.name or "").strip()
    if not raw_name or not card.price_text or not card.href:
        return None

    price = parse_price(card.price_text)
    if price == 0:
        return None

    original_price = parse_price(card.original_price_text) or None
    name = clean_name(raw_name)
    brand = infer_brand(name or raw_name)
    product_url = profile.absolute_url(card.href)

    product = ScrapedProduct(
        name=name,
        brand=brand,
        model=strip_brand(name, brand),
        price=price,
        original_price=original_price,
        discount_percentage=compute_discount(price, original_price),
        image_url=profile.absolute_url(card.image_url),
        product_url=product_url,
        in_stock=True,
        category=category,
    )

    if profile.post_process is not None:
        product = profile.post_process(product, product_url)

    return product.model_copy(update={"slug": product_slug(product.brand, product.model)})


__all__ = [
    "KNOWN_BRANDS",
    "UNKNOWN_BRAND",
    "build_product",
    "clean_name",
    "compute_discount",
    "infer_brand",
    "is_valid_product",
    "parse_price",
    "product_slug",
    "slugify",
    "strip_brand",
]
