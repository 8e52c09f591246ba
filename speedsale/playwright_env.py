"""Centralised helpers for Playwright launch + browser-context lifecycle."""

from __future__ import annotations

import os
import shlex
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any, AsyncIterator
from urllib.parse import urlparse

from playwright.async_api import Browser, BrowserContext, Page, Playwright, Route, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright_stealth import Stealth

from speedsale.logging_config import get_logger

LOGGER = get_logger(__name__)

_FALSE_VALUES = {"0", "false", "no", "off"}

BLOCKED_RESOURCE_TYPES = frozenset({"image", "stylesheet", "font", "media", "websocket"})
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
VIEWPORT = {"width": 1920, "height": 1080}


def _as_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in _FALSE_VALUES


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def headless_enabled() -> bool:
    """Return True if Playwright should run in headless mode."""

    return _as_bool(os.getenv("SPEEDSALE_HEADLESS"), True)


def stealth_enabled() -> bool:
    """Return True when stealth evasion scripts should be applied."""

    return _as_bool(os.getenv("SPEEDSALE_STEALTH"), True)


def resource_blocking_enabled() -> bool:
    return _as_bool(os.getenv("SPEEDSALE_BLOCK_RESOURCES"), True)


def user_agent() -> str:
    value = (os.getenv("USER_AGENT") or "").strip()
    return value or DEFAULT_USER_AGENT


@lru_cache(maxsize=1)
def _stealth_instance() -> Stealth:
    lang_env = os.getenv("SPEEDSALE_LANGS") or "en-GB,en"
    langs = tuple(
        entry.strip()
        for entry in lang_env.split(",")
        if entry.strip()
    ) or ("en-GB", "en")

    return Stealth(
        navigator_languages_override=langs[:2],
        navigator_platform_override=os.getenv("SPEEDSALE_PLATFORM", "Win32"),
        navigator_user_agent_override=user_agent(),
        navigator_vendor_override=os.getenv("SPEEDSALE_VENDOR", "Google Inc."),
    )


def apply_stealth(playwright: Playwright) -> None:
    """Hook the provided Playwright object with stealth evasions when enabled."""

    if not stealth_enabled():
        return
    _stealth_instance().hook_playwright_context(playwright)


def _proxy_config() -> dict[str, str] | None:
    raw = os.getenv("SPEEDSALE_PROXY")
    if not raw:
        return None
    parsed = urlparse(raw)
    if not parsed.scheme:
        return {"server": f"http://{raw}"}
    return {"server": raw}


def launch_kwargs() -> dict[str, Any]:
    """Return kwargs passed to ``chromium.launch``."""

    args = [
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-dev-shm-usage",
        "--disable-blink-features=AutomationControlled",
        "--disable-infobars",
        "--no-default-browser-check",
    ]
    extra_args = os.getenv("SPEEDSALE_CHROMIUM_ARGS")
    if extra_args:
        args.extend(shlex.split(extra_args))

    kwargs: dict[str, Any] = {
        "headless": headless_enabled(),
        "args": args,
    }

    channel = os.getenv("SPEEDSALE_BROWSER_CHANNEL")
    if channel:
        kwargs["channel"] = channel

    proxy = _proxy_config()
    if proxy:
        kwargs["proxy"] = proxy

    slow_mo = _env_int("SPEEDSALE_SLOW_MO_MS", 0)
    if slow_mo > 0:
        kwargs["slow_mo"] = slow_mo

    return kwargs


def apply_wait_policy(delay_ms: int) -> int:
    """Scale a configured delay by ``SPEEDSALE_WAIT_MULTIPLIER``."""

    multiplier = max(_env_float("SPEEDSALE_WAIT_MULTIPLIER", 1.0), 0.0)
    return max(int(delay_ms * multiplier), 0)


async def _block_nonessential(route: Route) -> None:
    if route.request.resource_type in BLOCKED_RESOURCE_TYPES:
        await route.abort()
    else:
        await route.continue_()


async def close_browser(browser: Browser | None, context: BrowserContext | None) -> None:
    """Close the provided context and browser without raising."""

    if context is not None:
        try:
            await context.close()
        except PlaywrightError as exc:
            LOGGER.debug("Browser context close failed: %s", exc)

    if browser is not None:
        try:
            await browser.close()
        except PlaywrightError as exc:
            LOGGER.debug("Browser close failed: %s", exc)


@asynccontextmanager
async def open_page() -> AsyncIterator[Page]:
    """Yield a page in a fresh, isolated browser context.

    The context and browser are torn down on every exit path.
    """

    async with async_playwright() as playwright:
        apply_stealth(playwright)
        browser = await playwright.chromium.launch(**launch_kwargs())
        context: BrowserContext | None = None
        try:
            context = await browser.new_context(user_agent=user_agent(), viewport=VIEWPORT)
            page = await context.new_page()
            if resource_blocking_enabled():
                await page.route("**/*", _block_nonessential)
            yield page
        finally:
            await close_browser(browser, context)
