"""Repository helpers for interacting with persistent storage."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from speedsale.retailers.profiles import RetailerProfile
from speedsale.schemas import ScrapedProduct

from .models_sql import PriceObservation, Retailer, Shoe, User, UserPreference, Watchlist


@dataclass(frozen=True)
class DailyPrice:
    """The observation already stored today for one (shoe, retailer) pair."""

    id: int
    price: float | None


def list_price(product: ScrapedProduct) -> float:
    """Catalog list price: the RRP when the retailer shows one."""

    return product.original_price or product.price


# ---- retailers ----


def get_retailer(session: Session, retailer_id: str) -> Retailer | None:
    return session.get(Retailer, retailer_id)


def sync_retailers(session: Session, profiles: Iterable[RetailerProfile]) -> int:
    """Insert a row for every profile that has none; existing rows are left alone."""

    created = 0
    for profile in profiles:
        if session.get(Retailer, profile.id) is not None:
            continue
        session.add(
            Retailer(
                id=profile.id,
                name=profile.name,
                url=profile.base_url,
                enabled=profile.enabled,
                last_scraped=None,
                scraping_interval_hours=profile.interval_hours,
            )
        )
        created += 1
    session.flush()
    return created


def mark_retailer_scraped(session: Session, retailer_id: str, ts_utc: datetime) -> None:
    retailer = session.get(Retailer, retailer_id)
    if retailer is None:
        return
    retailer.last_scraped = ts_utc
    session.flush()


def count_enabled_retailers(session: Session) -> int:
    stmt = select(func.count(Retailer.id)).where(Retailer.enabled.is_(True))
    return int(session.scalar(stmt) or 0)


# ---- catalog ----


def shoe_ids_by_slug(session: Session, slugs: Iterable[str]) -> dict[str, int]:
    wanted = sorted({slug for slug in slugs if slug})
    if not wanted:
        return {}
    stmt = select(Shoe.slug, Shoe.id).where(Shoe.slug.in_(wanted))
    return {slug: shoe_id for slug, shoe_id in session.execute(stmt)}


def insert_shoe(session: Session, product: ScrapedProduct, ts_utc: datetime) -> Shoe:
    shoe = Shoe(
        brand=product.brand,
        model=product.model,
        slug=product.slug,
        price=list_price(product),
        description=product.description,
        image_url=product.image_url or None,
        category=product.category,
        gender=product.gender,
        last_scraped=ts_utc,
        created_at=ts_utc,
    )
    session.add(shoe)
    session.flush()
    return shoe


def touch_shoe(session: Session, shoe_id: int, product: ScrapedProduct, ts_utc: datetime) -> None:
    """Refresh the list price and last-scraped time of an existing shoe."""

    shoe = session.get(Shoe, shoe_id)
    if shoe is None:
        raise LookupError(f"shoe {shoe_id} disappeared")
    shoe.price = list_price(product)
    shoe.last_scraped = ts_utc
    session.flush()


# ---- price ledger ----


def daily_prices(
    session: Session,
    retailer_id: str,
    shoe_ids: Iterable[int],
    day: date,
) -> dict[int, DailyPrice]:
    """Return the stored observation per shoe for *retailer_id* on *day*."""

    ids = sorted(set(shoe_ids))
    if not ids:
        return {}
    stmt = (
        select(PriceObservation.shoe_id, PriceObservation.id, PriceObservation.price)
        .where(
            PriceObservation.retailer_id == retailer_id,
            PriceObservation.observed_on == day,
            PriceObservation.shoe_id.in_(ids),
        )
        .order_by(PriceObservation.shoe_id.asc(), PriceObservation.price.asc())
    )
    result: dict[int, DailyPrice] = {}
    for shoe_id, obs_id, price in session.execute(stmt):
        result.setdefault(shoe_id, DailyPrice(id=obs_id, price=price))
    return result


def insert_observation(
    session: Session,
    *,
    shoe_id: int,
    retailer_id: str,
    product: ScrapedProduct,
    ts_utc: datetime,
) -> PriceObservation:
    obs = PriceObservation(
        shoe_id=shoe_id,
        retailer_id=retailer_id,
        price=product.price,
        original_price=product.original_price,
        discount_percentage=product.discount_percentage,
        in_stock=product.in_stock,
        product_url=product.product_url,
        observed_at=ts_utc,
        observed_on=ts_utc.date(),
    )
    session.add(obs)
    session.flush()
    return obs


def lower_observation(
    session: Session,
    obs_id: int,
    product: ScrapedProduct,
    ts_utc: datetime,
) -> PriceObservation:
    """Overwrite today's observation in place with a cheaper sighting."""

    obs = session.get(PriceObservation, obs_id)
    if obs is None:
        raise LookupError(f"price observation {obs_id} disappeared")
    obs.price = product.price
    obs.original_price = product.original_price
    obs.discount_percentage = product.discount_percentage
    obs.in_stock = product.in_stock
    obs.product_url = product.product_url
    obs.observed_at = ts_utc
    session.flush()
    return obs


def get_latest_observation(session: Session, shoe_id: int) -> PriceObservation | None:
    """Most recent observation for a shoe across all retailers."""

    stmt = (
        select(PriceObservation)
        .where(PriceObservation.shoe_id == shoe_id)
        .order_by(PriceObservation.observed_at.desc(), PriceObservation.id.desc())
        .limit(1)
    )
    return session.execute(stmt).scalar_one_or_none()


def count_observations(session: Session) -> int:
    return int(session.scalar(select(func.count(PriceObservation.id))) or 0)


# ---- watchlists ----


def list_watchlist_entries(session: Session) -> list[tuple[Watchlist, User, Shoe]]:
    """Every watchlist row that references a shoe, joined to its user and shoe."""

    stmt = (
        select(Watchlist, User, Shoe)
        .join(User, User.id == Watchlist.user_id)
        .join(Shoe, Shoe.id == Watchlist.shoe_id)
        .where(Watchlist.shoe_id.is_not(None))
        .order_by(Watchlist.id.asc())
    )
    return [(row[0], row[1], row[2]) for row in session.execute(stmt).all()]


def get_user_preference(session: Session, user_id: int) -> UserPreference | None:
    stmt = select(UserPreference).where(UserPreference.user_id == user_id).limit(1)
    return session.execute(stmt).scalar_one_or_none()
