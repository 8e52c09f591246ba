"""Merge scraped products into the catalog and the daily-cheapest price ledger.

Each product is its own unit of work: a failure rolls back that product only.
Within one batch the first occurrence of a slug wins. Across runs, the ledger
keeps at most one observation per (shoe, retailer, UTC day) and only ever
lowers it.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from speedsale.logging_config import get_logger
from speedsale.normalizers import is_valid_product
from speedsale.schemas import ScrapedProduct
from speedsale.storage import repo
from speedsale.storage.repo import DailyPrice

LOGGER = get_logger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def dedupe_by_slug(products: Iterable[ScrapedProduct]) -> list[ScrapedProduct]:
    """Keep the first product seen for each slug, in input order."""

    seen: set[str] = set()
    unique: list[ScrapedProduct] = []
    for product in products:
        if product.slug in seen:
            continue
        seen.add(product.slug)
        unique.append(product)
    return unique


class CatalogReconciler:
    def __init__(self, session_factory: sessionmaker[Session], *, clock: Clock = _utcnow) -> None:
        self._session_factory = session_factory
        self._clock = clock

    def reconcile(self, products: list[ScrapedProduct], retailer_id: str) -> int:
        """Persist *products* for *retailer_id*; returns how many were saved."""

        now = self._clock()
        valid = [product for product in products if is_valid_product(product) and product.slug]
        dropped = len(products) - len(valid)
        if dropped:
            LOGGER.warning(
                "Dropped invalid products before save | retailer=%s dropped=%d",
                retailer_id,
                dropped,
            )
        batch = dedupe_by_slug(valid)

        saved = 0
        with self._session_factory() as session:
            shoe_ids = repo.shoe_ids_by_slug(session, (product.slug for product in batch))
            todays = repo.daily_prices(session, retailer_id, shoe_ids.values(), now.date())
            session.commit()

            for product in batch:
                try:
                    shoe_id = self._upsert_shoe(session, product, shoe_ids.get(product.slug), now)
                    ledger_entry = self._record_price(
                        session, shoe_id, retailer_id, product, todays.get(shoe_id), now
                    )
                    session.commit()
                except (SQLAlchemyError, LookupError) as exc:
                    session.rollback()
                    LOGGER.warning(
                        "Failed to save product | retailer=%s slug=%s error=%s",
                        retailer_id,
                        product.slug,
                        exc,
                    )
                    continue

                shoe_ids[product.slug] = shoe_id
                todays[shoe_id] = ledger_entry
                saved += 1

            try:
                repo.mark_retailer_scraped(session, retailer_id, now)
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                LOGGER.warning(
                    "Failed to update last_scraped | retailer=%s error=%s", retailer_id, exc
                )

        LOGGER.info(
            "Reconciled batch | retailer=%s received=%d unique=%d saved=%d",
            retailer_id,
            len(products),
            len(batch),
            saved,
        )
        return saved

    def _upsert_shoe(
        self,
        session: Session,
        product: ScrapedProduct,
        shoe_id: int | None,
        now: datetime,
    ) -> int:
        if shoe_id is not None:
            repo.touch_shoe(session, shoe_id, product, now)
            return shoe_id
        shoe = repo.insert_shoe(session, product, now)
        LOGGER.debug("New catalog shoe | slug=%s id=%s", product.slug, shoe.id)
        return shoe.id

    def _record_price(
        self,
        session: Session,
        shoe_id: int,
        retailer_id: str,
        product: ScrapedProduct,
        existing: DailyPrice | None,
        now: datetime,
    ) -> DailyPrice:
        if existing is None:
            obs = repo.insert_observation(
                session, shoe_id=shoe_id, retailer_id=retailer_id, product=product, ts_utc=now
            )
            return DailyPrice(id=obs.id, price=obs.price)

        if existing.price is None or product.price < existing.price:
            repo.lower_observation(session, existing.id, product, now)
            return DailyPrice(id=existing.id, price=product.price)

        return existing
