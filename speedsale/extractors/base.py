"""Shared contract for extraction strategies."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Protocol

from speedsale.errors import ExtractionError
from speedsale.normalizers import build_product, is_valid_product
from speedsale.retailers.profiles import RetailerProfile
from speedsale.schemas import ScrapedProduct

DEFAULT_PAGINATION_LINKS = ".pagination a, .pager a"

PRICE_TEXT_RE = re.compile(r"[£$€]\s*\d[\d,]*(?:\.\d+)?")

USER_AGENTS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
)


@dataclass
class RawCard:
    """Text pulled from one product container, before normalisation."""

    name: str | None = None
    price_text: str | None = None
    original_price_text: str | None = None
    image_url: str | None = None
    href: str | None = None


class ExtractionStrategy(Protocol):
    async def extract(
        self, profile: RetailerProfile, category: str | None = None
    ) -> list[ScrapedProduct]:
        ...


def pick_price_text(candidates: list[str]) -> str | None:
    """Return the first candidate that looks like a currency amount.

    Listing cards often expose several spans under the price selector; the
    first one with a currency-prefixed number is the current price. Falls back
    to the first non-empty candidate.
    """

    stripped = [text.strip() for text in candidates if text and text.strip()]
    for text in stripped:
        if PRICE_TEXT_RE.search(text):
            return text
    return stripped[0] if stripped else None


def join_name_parts(parts: list[str]) -> str:
    """Join a product name split across several elements."""

    return " ".join(part.strip() for part in parts if part and part.strip()).strip()


def card_to_product(
    profile: RetailerProfile,
    card: RawCard,
    *,
    category: str | None = None,
) -> ScrapedProduct | None:
    """Normalise one card; ``None`` for incomplete or invalid cards.

    Raises :class:`ExtractionError` when the card content cannot be coerced
    into a product record at all.
    """

    try:
        product = build_product(profile, card, category=category)
    except (ValueError, TypeError) as exc:
        raise ExtractionError(
            f"Unusable product element: {exc}",
            retailer=profile.id,
            category=category,
            url=card.href,
        ) from exc
    if product is None or not is_valid_product(product):
        return None
    return product
