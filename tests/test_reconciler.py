from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from speedsale.reconciler import CatalogReconciler, dedupe_by_slug
from speedsale.retailers import sportsshoes
from speedsale.schemas import ScrapedProduct
from speedsale.storage import repo
from speedsale.storage.models_sql import PriceObservation, Retailer, Shoe

DAY1 = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _product(price: float, *, slug: str = "nike-air-zoom-pegasus-40", **overrides) -> ScrapedProduct:
    data = {
        "name": "Nike Air Zoom Pegasus 40",
        "brand": "Nike",
        "model": "Air Zoom Pegasus 40",
        "price": price,
        "product_url": f"https://www.sportsshoes.com/product/{slug}/",
        "slug": slug,
    }
    data.update(overrides)
    return ScrapedProduct(**data)


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


@pytest.fixture()
def clock() -> Clock:
    return Clock(DAY1)


@pytest.fixture()
def reconciler(session_factory, clock) -> CatalogReconciler:
    with session_factory() as session:
        repo.sync_retailers(session, [sportsshoes.PROFILE])
        session.commit()
    return CatalogReconciler(session_factory, clock=clock)


def _prices(session_factory) -> list[PriceObservation]:
    with session_factory() as session:
        return list(session.scalars(select(PriceObservation).order_by(PriceObservation.id)))


def _shoe_count(session_factory) -> int:
    with session_factory() as session:
        return int(session.scalar(select(func.count(Shoe.id))))


def test_daily_cheapest_keeps_lowest_price(reconciler, session_factory, clock) -> None:
    for offset, price in enumerate([12.00, 15.00, 9.99, 11.00]):
        clock.now = DAY1 + timedelta(hours=offset)
        assert reconciler.reconcile([_product(price)], "sportsshoes") == 1

    rows = _prices(session_factory)
    assert len(rows) == 1
    assert rows[0].price == pytest.approx(9.99)
    assert _shoe_count(session_factory) == 1


def test_next_day_creates_new_observation(reconciler, session_factory, clock) -> None:
    reconciler.reconcile([_product(9.99)], "sportsshoes")

    clock.now = DAY1 + timedelta(days=1)
    reconciler.reconcile([_product(20.00)], "sportsshoes")

    rows = _prices(session_factory)
    assert [row.price for row in rows] == [pytest.approx(9.99), pytest.approx(20.00)]
    assert [row.observed_on for row in rows] == [DAY1.date(), (DAY1 + timedelta(days=1)).date()]


def test_reconcile_is_idempotent_for_same_day(reconciler, session_factory) -> None:
    batch = [_product(89.99), _product(120.0, slug="hoka-clifton-9", brand="Hoka", model="Clifton 9")]

    assert reconciler.reconcile(batch, "sportsshoes") == 2
    assert reconciler.reconcile(batch, "sportsshoes") == 2

    assert _shoe_count(session_factory) == 2
    assert len(_prices(session_factory)) == 2


def test_invalid_products_are_never_persisted(reconciler, session_factory) -> None:
    batch = [
        _product(89.99, product_url=""),
        _product(0.0, slug="zero-price"),
    ]

    assert reconciler.reconcile(batch, "sportsshoes") == 0
    assert _shoe_count(session_factory) == 0
    assert _prices(session_factory) == []


def test_first_slug_in_batch_wins(reconciler, session_factory) -> None:
    batch = [_product(89.99), _product(70.00)]

    assert dedupe_by_slug(batch) == [batch[0]]
    assert reconciler.reconcile(batch, "sportsshoes") == 1
    assert _prices(session_factory)[0].price == pytest.approx(89.99)


def test_persistence_failure_skips_only_that_product(reconciler, session_factory, monkeypatch) -> None:
    original_insert = repo.insert_shoe

    def flaky_insert(session, product, ts_utc):
        if product.slug == "broken-shoe":
            raise SQLAlchemyError("disk I/O error")
        return original_insert(session, product, ts_utc)

    monkeypatch.setattr(repo, "insert_shoe", flaky_insert)
    batch = [
        _product(80.0, slug="asics-novablast-4", brand="Asics", model="Novablast 4"),
        _product(90.0, slug="broken-shoe"),
        _product(100.0, slug="brooks-ghost-15", brand="Brooks", model="Ghost 15"),
    ]

    assert reconciler.reconcile(batch, "sportsshoes") == 2

    with session_factory() as session:
        slugs = set(session.scalars(select(Shoe.slug)))
    assert slugs == {"asics-novablast-4", "brooks-ghost-15"}
    assert len(_prices(session_factory)) == 2


def test_marks_retailer_scraped(reconciler, session_factory) -> None:
    reconciler.reconcile([_product(89.99)], "sportsshoes")

    with session_factory() as session:
        retailer = session.get(Retailer, "sportsshoes")
        assert retailer is not None
        assert _as_utc(retailer.last_scraped) == DAY1


def test_list_price_uses_original_price(reconciler, session_factory) -> None:
    reconciler.reconcile([_product(89.99, original_price=129.99, discount_percentage=30.8)], "sportsshoes")

    with session_factory() as session:
        shoe = session.scalar(select(Shoe))
        assert shoe.price == pytest.approx(129.99)
        obs = session.scalar(select(PriceObservation))
        assert obs.original_price == pytest.approx(129.99)
        assert obs.discount_percentage == pytest.approx(30.8)


def test_cheaper_sighting_overwrites_observation_details(reconciler, session_factory, clock) -> None:
    reconciler.reconcile([_product(100.0, discount_percentage=None)], "sportsshoes")
    clock.now = DAY1 + timedelta(hours=3)
    reconciler.reconcile(
        [_product(80.0, original_price=100.0, discount_percentage=20.0)], "sportsshoes"
    )

    rows = _prices(session_factory)
    assert len(rows) == 1
    assert rows[0].price == pytest.approx(80.0)
    assert rows[0].discount_percentage == pytest.approx(20.0)
    assert _as_utc(rows[0].observed_at) == DAY1 + timedelta(hours=3)


def test_slug_collision_across_brands_merges_into_one_shoe(reconciler, session_factory, clock) -> None:
    # Two differently-branded listings that clean down to the same slug share a row.
    first = _product(120.0, slug="hoka-one-one-clifton", brand="Hoka", model="One One Clifton")
    second = _product(110.0, slug="hoka-one-one-clifton", brand="Unknown", model="Hoka One One Clifton")

    reconciler.reconcile([first], "sportsshoes")
    clock.now = DAY1 + timedelta(hours=1)
    reconciler.reconcile([second], "sportsshoes")

    with session_factory() as session:
        shoes = list(session.scalars(select(Shoe)))
    assert len(shoes) == 1
    assert shoes[0].brand == "Hoka"
    assert _prices(session_factory)[0].price == pytest.approx(110.0)
