"""SportsShoes.com retailer profile."""

from __future__ import annotations

import re

from speedsale.normalizers import clean_name, strip_brand
from speedsale.retailers.profiles import (
    Pagination,
    PaginationKind,
    RateLimit,
    RetailerProfile,
    SelectorSet,
    StrategyKind,
)
from speedsale.schemas import ScrapedProduct

_GENDERED_SUFFIX_RE = re.compile(r"\s+(?:Men's|Women's|Mens|Womens|Unisex)\s*$", re.I)


def infer_gender(url: str) -> str:
    if "/mens/" in url:
        return "male"
    if "/womens/" in url:
        return "female"
    return "unisex"


def process_product(product: ScrapedProduct, url: str) -> ScrapedProduct:
    """Gender from the listing URL; trailing gender words off the model."""

    name = _GENDERED_SUFFIX_RE.sub("", clean_name(product.name)).strip()
    return product.model_copy(
        update={
            "name": name,
            "model": strip_brand(name, product.brand),
            "gender": infer_gender(url),
        }
    )


PROFILE = RetailerProfile(
    id="sportsshoes",
    name="SportsShoes",
    base_url="https://www.sportsshoes.com",
    strategy=StrategyKind.DYNAMIC,
    selectors=SelectorSet(
        container='[class*="css-1n4"]',
        name='p[class*="chakra-text"]',
        price="span",
        original_price=".was-price, .original-price, .rrp",
        image="img",
        link="a",
        next_page=(
            'button:has-text("2"), button:has-text("3"), '
            'button:has-text("4"), button:has-text("5")'
        ),
    ),
    pagination=Pagination(kind=PaginationKind.NUMBERED, max_pages=10),
    rate_limit=RateLimit(delay_ms=200, max_concurrent=3),
    categories={
        "running": "/products/mens/running/shoes",
        "women": "/products/womens/running/shoes",
    },
    default_category="running",
    interval_hours=24,
    post_process=process_product,
)
