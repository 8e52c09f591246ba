"""Data validation schemas for scraped records, jobs and notifications."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ScrapedProduct(BaseModel):
    """One product extracted from a listing page, before reconciliation."""

    model_config = ConfigDict(extra="ignore")

    name: str = ""
    brand: str = ""
    model: str = ""
    price: float = 0.0
    original_price: float | None = None
    discount_percentage: float | None = None
    image_url: str = ""
    product_url: str = ""
    in_stock: bool = True
    description: str | None = None
    category: str | None = None
    gender: str | None = None
    slug: str = ""


class JobPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return {"high": 0, "medium": 1, "low": 2}[self.value]


class ScrapeJob(BaseModel):
    """A request to scrape one retailer, optionally one category."""

    retailer_id: str
    category: str | None = None
    priority: JobPriority = JobPriority.MEDIUM


class ScrapeResult(BaseModel):
    """Summary of one scrape job, returned to the trigger."""

    retailer_id: str
    success: bool = False
    products_found: int = 0
    products_saved: int = 0
    errors: list[str] = Field(default_factory=list)
    duration_ms: int = 0


class AlertUser(BaseModel):
    id: int | str
    email: str
    fname: str | None = None
    sname: str | None = None


class AlertShoe(BaseModel):
    id: int | str
    brand: str | None = None
    model: str | None = None
    image_url: str | None = None
    category: str | None = None
    gender: str | None = None
    slug: str | None = None


class PriceAlertPayload(BaseModel):
    """Everything the notifier needs to render a discount alert."""

    user: AlertUser
    shoe: AlertShoe
    current_price: float
    original_price: float
    discount_percentage: float
    user_discount_threshold: float
    product_url: str | None = None
    size: str = "Various"
    color: str = "Various"


class WelcomeEmailPayload(BaseModel):
    user: AlertUser
    dashboard_url: str
    profile_url: str
