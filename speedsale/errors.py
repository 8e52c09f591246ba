"""Custom exception types for the scraping pipeline."""

from __future__ import annotations

from typing import Optional


class ScrapeError(Exception):
    """Base error carrying the job context it was raised in."""

    stage = "scrape"

    def __init__(
        self,
        message: str = "Scraping failed.",
        *,
        retailer: Optional[str] = None,
        category: Optional[str] = None,
        url: Optional[str] = None,
    ) -> None:
        self.message = message
        self.retailer = retailer
        self.category = category
        self.url = url
        super().__init__(message)

    def __str__(self) -> str:
        context_parts: list[str] = []
        if self.retailer:
            context_parts.append(f"retailer={self.retailer}")
        if self.category:
            context_parts.append(f"category={self.category}")
        if self.url:
            context_parts.append(f"url={self.url}")
        context = ", ".join(context_parts)
        return f"{self.message} ({context})" if context else self.message


class ConfigurationError(ScrapeError):
    """Raised when a retailer is unknown, disabled or misconfigured."""

    stage = "config"


class PageLoadError(ScrapeError):
    """Raised when a page fails to load before anything was collected."""

    stage = "fetch"


class ExtractionError(ScrapeError):
    """Raised when a single product element cannot be turned into a record."""

    stage = "extract"


class PersistenceError(ScrapeError):
    """Raised when scraped records cannot be written to the catalog."""

    stage = "persist"
