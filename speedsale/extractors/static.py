"""Static-HTML extraction: one request per page, parsed with BeautifulSoup."""

from __future__ import annotations

import asyncio
import random
from typing import Protocol

import requests
from bs4 import BeautifulSoup, Tag
from soupsieve import SelectorSyntaxError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from speedsale.errors import ExtractionError, PageLoadError
from speedsale.extractors.base import (
    DEFAULT_PAGINATION_LINKS,
    USER_AGENTS,
    RawCard,
    card_to_product,
    join_name_parts,
    pick_price_text,
)
from speedsale.extractors.dom_utils import pause
from speedsale.logging_config import get_logger
from speedsale.retailers.profiles import PaginationKind, RetailerProfile, SelectorSet
from speedsale.schemas import ScrapedProduct

LOGGER = get_logger(__name__)

REQUEST_TIMEOUT_S = 30


class PageFetcher(Protocol):
    def fetch(self, url: str) -> str:
        ...


class HttpFetcher:
    """Fetch listing HTML over plain HTTP with a browser-like header set."""

    def __init__(self, *, timeout: float = REQUEST_TIMEOUT_S, session: requests.Session | None = None) -> None:
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "User-Agent": random.choice(USER_AGENTS),
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
                "Accept-Language": "en-GB,en;q=0.5",
                "Accept-Encoding": "gzip, deflate",
                "Connection": "keep-alive",
                "Upgrade-Insecure-Requests": "1",
            }
        )

    @retry(
        retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
        wait=wait_exponential(multiplier=0.5, max=4),
        stop=stop_after_attempt(2),
        reraise=True,
    )
    def fetch(self, url: str) -> str:
        response = self._session.get(url, timeout=self._timeout)
        response.raise_for_status()
        return response.text


def _card_from_tag(card: Tag, selectors: SelectorSet) -> RawCard:
    name = join_name_parts([node.get_text(" ", strip=True) for node in card.select(selectors.name)])
    price_text = pick_price_text([node.get_text(" ", strip=True) for node in card.select(selectors.price)])

    original_price_text = None
    if selectors.original_price:
        node = card.select_one(selectors.original_price)
        if node is not None:
            original_price_text = node.get_text(" ", strip=True) or None

    image_url = None
    image = card.select_one(selectors.image)
    if image is not None:
        image_url = image.get("src") or image.get("data-src")

    href = None
    link = card.select_one(selectors.link)
    if link is not None:
        href = link.get("href")

    return RawCard(
        name=name or None,
        price_text=price_text,
        original_price_text=original_price_text,
        image_url=image_url,
        href=href,
    )


def extract_from_html(
    html: str,
    profile: RetailerProfile,
    *,
    category: str | None = None,
) -> list[ScrapedProduct]:
    """Extract valid products from one listing page of HTML."""

    soup = BeautifulSoup(html, "html.parser")
    products: list[ScrapedProduct] = []
    for index, card in enumerate(soup.select(profile.selectors.container)):
        try:
            product = card_to_product(profile, _card_from_tag(card, profile.selectors), category=category)
        except ExtractionError as exc:
            LOGGER.warning(
                "Skipping product element | retailer=%s index=%d error=%s",
                profile.id,
                index,
                exc,
            )
            continue
        if product is not None:
            products.append(product)
    return products


def pagination_links(html: str, profile: RetailerProfile) -> list[str]:
    """Return absolute URLs of the pagination links on a listing page."""

    soup = BeautifulSoup(html, "html.parser")
    selector = profile.selectors.next_page or DEFAULT_PAGINATION_LINKS
    try:
        nodes = soup.select(selector)
    except SelectorSyntaxError as exc:
        LOGGER.warning(
            "Pagination selector unsupported for static pages | retailer=%s selector=%s error=%s",
            profile.id,
            selector,
            exc,
        )
        return []
    links: list[str] = []
    for node in nodes:
        href = node.get("href")
        if href:
            links.append(profile.absolute_url(href))
    return links


class StaticStrategy:
    """Single request + DOM query, with optional link-following pagination."""

    def __init__(self, fetcher: PageFetcher | None = None) -> None:
        self._fetcher = fetcher or HttpFetcher()

    async def _fetch(self, url: str) -> str:
        return await asyncio.to_thread(self._fetcher.fetch, url)

    async def extract(
        self, profile: RetailerProfile, category: str | None = None
    ) -> list[ScrapedProduct]:
        url = profile.category_url(category)
        LOGGER.info("Static fetch | retailer=%s category=%s url=%s", profile.id, category, url)

        try:
            html = await self._fetch(url)
        except requests.RequestException as exc:
            raise PageLoadError(
                f"Request failed: {exc}", retailer=profile.id, category=category, url=url
            ) from exc

        products = extract_from_html(html, profile, category=category)
        if not products:
            LOGGER.warning(
                "No products matched container selector | retailer=%s selector=%s",
                profile.id,
                profile.selectors.container,
            )
            return products

        if profile.pagination.kind is PaginationKind.NUMBERED:
            await self._follow_pages(html, profile, category, products)

        LOGGER.info(
            "Static extraction complete | retailer=%s products=%d", profile.id, len(products)
        )
        return products

    async def _follow_pages(
        self,
        first_html: str,
        profile: RetailerProfile,
        category: str | None,
        products: list[ScrapedProduct],
    ) -> None:
        links = pagination_links(first_html, profile)
        max_pages = max(profile.pagination.max_pages, 1)

        # links[0] is the page already loaded
        for index in range(1, max_pages):
            if index >= len(links):
                break
            page_url = links[index]
            await pause(profile.rate_limit.delay_ms)
            try:
                html = await self._fetch(page_url)
            except requests.RequestException as exc:
                LOGGER.warning(
                    "Pagination stopped | retailer=%s page=%d url=%s error=%s",
                    profile.id,
                    index + 1,
                    page_url,
                    exc,
                )
                break
            page_products = extract_from_html(html, profile, category=category)
            LOGGER.info(
                "Fetched page | retailer=%s page=%d products=%d",
                profile.id,
                index + 1,
                len(page_products),
            )
            products.extend(page_products)
