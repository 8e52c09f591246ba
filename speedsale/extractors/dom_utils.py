"""Helper utilities for safely interacting with retailer DOM content."""

from __future__ import annotations

import asyncio
from typing import Any

from playwright.async_api import Error as PlaywrightError

from speedsale.playwright_env import apply_wait_policy


async def pause(delay_ms: int, *, obey_policy: bool = True) -> None:
    """Sleep for *delay_ms* milliseconds, scaled by the global wait policy."""

    if obey_policy:
        delay_ms = apply_wait_policy(delay_ms)
    if delay_ms <= 0:
        return
    await asyncio.sleep(delay_ms / 1000)


async def text_safe(handle: Any) -> str | None:
    """Return the stripped text content of *handle* while ignoring DOM failures."""

    if handle is None:
        return None
    try:
        result = await handle.text_content()
    except PlaywrightError:
        return None
    if result is None:
        return None
    return result.strip() or None


async def attribute_safe(handle: Any, attribute: str) -> str | None:
    if handle is None:
        return None
    try:
        value = await handle.get_attribute(attribute)
    except PlaywrightError:
        return None
    if value is None:
        return None
    trimmed = value.strip()
    return trimmed or None


async def texts_safe(root: Any, selector: str | None) -> list[str]:
    """Return the texts of every element under *root* matching *selector*."""

    if not selector:
        return []
    try:
        handles = await root.query_selector_all(selector)
    except PlaywrightError:
        return []
    texts: list[str] = []
    for handle in handles:
        text = await text_safe(handle)
        if text:
            texts.append(text)
    return texts


async def first_or_none(root: Any, selector: str | None) -> Any | None:
    if not selector:
        return None
    try:
        return await root.query_selector(selector)
    except PlaywrightError:
        return None
