"""Declarative retailer profiles describing how a catalog site is scraped."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable
from urllib.parse import urljoin

from speedsale.logging_config import get_logger
from speedsale.schemas import ScrapedProduct

LOGGER = get_logger(__name__)

PostProcessHook = Callable[[ScrapedProduct, str], ScrapedProduct]


class StrategyKind(str, Enum):
    """How listing HTML is obtained."""

    STATIC = "static"
    DYNAMIC = "dynamic"


class PaginationKind(str, Enum):
    INFINITE = "infinite"
    NUMBERED = "numbered"
    LOAD_MORE = "loadMore"


@dataclass(frozen=True)
class SelectorSet:
    """CSS selectors used to locate product cards and their fields."""

    container: str
    name: str
    price: str
    image: str
    link: str
    original_price: str | None = None
    next_page: str | None = None
    load_more: str | None = None


@dataclass(frozen=True)
class Pagination:
    kind: PaginationKind = PaginationKind.NUMBERED
    max_pages: int = 5


@dataclass(frozen=True)
class RateLimit:
    delay_ms: int = 1000
    max_concurrent: int = 1


@dataclass(frozen=True)
class RetailerProfile:
    """Scraping configuration for one retailer. Pure data."""

    id: str
    name: str
    base_url: str
    strategy: StrategyKind
    selectors: SelectorSet
    pagination: Pagination = field(default_factory=Pagination)
    rate_limit: RateLimit = field(default_factory=RateLimit)
    categories: dict[str, str] = field(default_factory=dict)
    enabled: bool = True
    default_category: str | None = None
    interval_hours: int = 24
    post_process: PostProcessHook | None = None

    def category_url(self, category: str | None = None) -> str:
        """Return the listing URL for *category*, or the base URL."""

        if not category:
            return self.base_url
        path = self.categories.get(category)
        if path is None:
            LOGGER.warning(
                "Unknown category for retailer | retailer=%s category=%s",
                self.id,
                category,
            )
            return self.base_url
        return urljoin(self.base_url.rstrip("/") + "/", path.lstrip("/"))

    def absolute_url(self, value: str | None) -> str:
        if not value:
            return ""
        if value.startswith("//"):
            return f"https:{value}"
        return urljoin(self.base_url.rstrip("/") + "/", value)

    def with_overrides(self, overrides: dict[str, Any] | None) -> "RetailerProfile":
        """Return a copy with deploy-time overrides from configuration applied."""

        if not overrides:
            return self

        profile = self
        if "enabled" in overrides:
            profile = replace(profile, enabled=bool(overrides["enabled"]))
        if overrides.get("strategy"):
            profile = replace(profile, strategy=StrategyKind(overrides["strategy"]))
        if overrides.get("interval_hours"):
            profile = replace(profile, interval_hours=int(overrides["interval_hours"]))
        if overrides.get("max_pages"):
            profile = replace(
                profile,
                pagination=replace(profile.pagination, max_pages=int(overrides["max_pages"])),
            )
        if overrides.get("pagination"):
            profile = replace(
                profile,
                pagination=replace(profile.pagination, kind=PaginationKind(overrides["pagination"])),
            )
        if overrides.get("delay_ms") is not None:
            profile = replace(
                profile,
                rate_limit=replace(profile.rate_limit, delay_ms=int(overrides["delay_ms"])),
            )
        if overrides.get("max_concurrent"):
            profile = replace(
                profile,
                rate_limit=replace(
                    profile.rate_limit, max_concurrent=max(1, int(overrides["max_concurrent"]))
                ),
            )
        return profile
