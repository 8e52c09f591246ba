"""Headless-browser extraction driven by Playwright."""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from typing import Any, Callable
from urllib.parse import parse_qsl, urlencode, urlparse

from playwright.async_api import Error as PlaywrightError

from speedsale.errors import ExtractionError, PageLoadError
from speedsale.extractors.base import RawCard, card_to_product, join_name_parts, pick_price_text
from speedsale.extractors.dom_utils import attribute_safe, first_or_none, pause, text_safe, texts_safe
from speedsale.logging_config import get_logger
from speedsale.playwright_env import open_page
from speedsale.retailers.profiles import PaginationKind, RetailerProfile, SelectorSet
from speedsale.schemas import ScrapedProduct

LOGGER = get_logger(__name__)

NAVIGATION_TIMEOUT_MS = 15000
PAGINATION_TIMEOUT_MS = 30000
SETTLE_MS = 1000
POPUP_SETTLE_MS = 200
EXTRACTION_BATCH = 20
EXTRACTION_BATCH_PAUSE_MS = 200

POPUP_SELECTORS = (
    "#onetrust-accept-btn-handler",
    'button:has-text("Accept")',
    'button:has-text("Close")',
    'button:has-text("No Thanks")',
    'button[class*="accept"]',
    'button[class*="close"]',
)

PageProvider = Callable[[], AbstractAsyncContextManager[Any]]


def next_page_url(url: str, page_number: int) -> str:
    """Rewrite or append the ``page`` query parameter of *url*."""

    parsed = urlparse(url)
    params = parse_qsl(parsed.query, keep_blank_values=True)
    replaced = False
    rebuilt: list[tuple[str, str]] = []
    for key, value in params:
        if key == "page":
            if not replaced:
                rebuilt.append((key, str(page_number)))
                replaced = True
            continue
        rebuilt.append((key, value))
    if not replaced:
        rebuilt.append(("page", str(page_number)))
    return parsed._replace(query=urlencode(rebuilt, doseq=True)).geturl()


async def dismiss_popups(page: Any) -> bool:
    """Click the first known consent/popup control. Absence is not an error."""

    for selector in POPUP_SELECTORS:
        try:
            button = await page.query_selector(selector)
            if button is None:
                continue
            await button.click()
        except PlaywrightError:
            continue
        await pause(POPUP_SETTLE_MS)
        return True
    return False


async def _card_from_handle(handle: Any, selectors: SelectorSet) -> RawCard:
    name = join_name_parts(await texts_safe(handle, selectors.name))
    price_text = pick_price_text(await texts_safe(handle, selectors.price))

    original_price_text = None
    if selectors.original_price:
        original_price_text = await text_safe(await first_or_none(handle, selectors.original_price))

    image = await first_or_none(handle, selectors.image)
    image_url = await attribute_safe(image, "src") or await attribute_safe(image, "data-src")

    link = await first_or_none(handle, selectors.link)
    href = await attribute_safe(link, "href")

    return RawCard(
        name=name or None,
        price_text=price_text,
        original_price_text=original_price_text,
        image_url=image_url,
        href=href,
    )


class _Collector:
    """Accumulates valid products across pagination steps of one job."""

    def __init__(self, profile: RetailerProfile, category: str | None) -> None:
        self.profile = profile
        self.category = category
        self.products: list[ScrapedProduct] = []
        self._seen_urls: set[str] = set()

    async def collect(self, page: Any) -> int:
        """Extract every container on *page*; returns the number of containers."""

        try:
            handles = await page.query_selector_all(self.profile.selectors.container)
        except PlaywrightError as exc:
            LOGGER.warning("Container query failed | retailer=%s error=%s", self.profile.id, exc)
            return 0

        for index, handle in enumerate(handles):
            try:
                card = await _card_from_handle(handle, self.profile.selectors)
                product = card_to_product(self.profile, card, category=self.category)
            except (PlaywrightError, ExtractionError) as exc:
                LOGGER.warning(
                    "Skipping product element | retailer=%s index=%d error=%s",
                    self.profile.id,
                    index,
                    exc,
                )
                continue

            if product is not None:
                if product.product_url not in self._seen_urls:
                    self._seen_urls.add(product.product_url)
                    self.products.append(product)

            if index and index % EXTRACTION_BATCH == 0:
                await pause(EXTRACTION_BATCH_PAUSE_MS)

        LOGGER.debug(
            "Collected page | retailer=%s containers=%d total=%d",
            self.profile.id,
            len(handles),
            len(self.products),
        )
        return len(handles)


class DynamicStrategy:
    """Navigate with a headless browser, paginate, then extract cards."""

    def __init__(
        self,
        page_provider: PageProvider = open_page,
        *,
        navigation_timeout_ms: int = NAVIGATION_TIMEOUT_MS,
        pagination_timeout_ms: int = PAGINATION_TIMEOUT_MS,
        settle_ms: int = SETTLE_MS,
    ) -> None:
        self._page_provider = page_provider
        self._navigation_timeout_ms = navigation_timeout_ms
        self._pagination_timeout_ms = pagination_timeout_ms
        self._settle_ms = settle_ms

    async def extract(
        self, profile: RetailerProfile, category: str | None = None
    ) -> list[ScrapedProduct]:
        url = profile.category_url(category)
        async with self._page_provider() as page:
            products = await self.collect(page, profile, url, category=category)
        LOGGER.info(
            "Dynamic extraction complete | retailer=%s category=%s products=%d",
            profile.id,
            category,
            len(products),
        )
        return products

    async def collect(
        self,
        page: Any,
        profile: RetailerProfile,
        url: str,
        *,
        category: str | None = None,
    ) -> list[ScrapedProduct]:
        LOGGER.info("Navigating | retailer=%s url=%s", profile.id, url)
        try:
            await page.goto(url, wait_until="domcontentloaded", timeout=self._navigation_timeout_ms)
        except PlaywrightError as exc:
            raise PageLoadError(
                f"Navigation failed: {exc}", retailer=profile.id, category=category, url=url
            ) from exc

        await dismiss_popups(page)
        collector = _Collector(profile, category)
        kind = profile.pagination.kind

        if kind is PaginationKind.INFINITE:
            await self._scroll_to_end(page, profile)
            await collector.collect(page)
        elif kind is PaginationKind.NUMBERED:
            await self._walk_numbered_pages(page, profile, collector)
        elif kind is PaginationKind.LOAD_MORE:
            await self._click_load_more(page, profile)
            await collector.collect(page)
        else:
            await collector.collect(page)

        return collector.products

    async def _page_height(self, page: Any) -> int:
        return int(await page.evaluate("document.body.scrollHeight") or 0)

    async def _scroll_to_end(self, page: Any, profile: RetailerProfile) -> int:
        """Scroll until the page stops growing or the attempt cap is hit."""

        max_scrolls = max(profile.pagination.max_pages, 1)
        attempts = 0
        try:
            previous: int | None = None
            current = await self._page_height(page)
            while current != previous and attempts < max_scrolls:
                previous = current
                await page.evaluate("window.scrollTo(0, document.body.scrollHeight)")
                await pause(self._settle_ms)
                current = await self._page_height(page)
                attempts += 1
        except PlaywrightError as exc:
            LOGGER.warning(
                "Scrolling stopped | retailer=%s attempts=%d error=%s", profile.id, attempts, exc
            )
        LOGGER.info("Infinite scroll done | retailer=%s scrolls=%d", profile.id, attempts)
        return attempts

    async def _walk_numbered_pages(
        self, page: Any, profile: RetailerProfile, collector: _Collector
    ) -> int:
        """Visit ``?page=N`` URLs directly; returns the number of pages loaded."""

        max_pages = max(profile.pagination.max_pages, 1)
        await collector.collect(page)
        pages_loaded = 1
        current_url = page.url

        for page_number in range(2, max_pages + 1):
            target = next_page_url(current_url, page_number)
            await pause(profile.rate_limit.delay_ms)
            try:
                await page.goto(
                    target, wait_until="domcontentloaded", timeout=self._pagination_timeout_ms
                )
            except PlaywrightError as exc:
                LOGGER.warning(
                    "Pagination stopped | retailer=%s page=%d url=%s error=%s",
                    profile.id,
                    page_number,
                    target,
                    exc,
                )
                break

            pages_loaded += 1
            await dismiss_popups(page)
            containers = await collector.collect(page)
            LOGGER.info(
                "Fetched page | retailer=%s page=%d containers=%d total=%d",
                profile.id,
                page_number,
                containers,
                len(collector.products),
            )
            if containers == 0:
                break
            current_url = target

        return pages_loaded

    async def _click_load_more(self, page: Any, profile: RetailerProfile) -> int:
        selector = profile.selectors.load_more
        if not selector:
            LOGGER.warning("Load-more pagination without a selector | retailer=%s", profile.id)
            return 0

        clicks = 0
        for _ in range(max(profile.pagination.max_pages, 1)):
            button = await first_or_none(page, selector)
            if button is None:
                break
            try:
                await button.click()
                await pause(self._settle_ms)
                await page.wait_for_load_state("domcontentloaded")
            except PlaywrightError as exc:
                LOGGER.warning(
                    "Load more stopped | retailer=%s clicks=%d error=%s", profile.id, clicks, exc
                )
                break
            clicks += 1
        LOGGER.info("Load more done | retailer=%s clicks=%d", profile.id, clicks)
        return clicks
