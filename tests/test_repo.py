from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from speedsale.retailers import sportsshoes
from speedsale.schemas import ScrapedProduct
from speedsale.storage import repo
from speedsale.storage.models_sql import PriceObservation, Retailer, Shoe, User, UserPreference, Watchlist

TS = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


def _product(**overrides) -> ScrapedProduct:
    data = {
        "name": "Hoka Clifton 9",
        "brand": "Hoka",
        "model": "Clifton 9",
        "price": 110.0,
        "product_url": "https://www.sportsshoes.com/product/hoka/clifton-9/",
        "slug": "hoka-clifton-9",
    }
    data.update(overrides)
    return ScrapedProduct(**data)


@pytest.fixture()
def shoe(db_session) -> Shoe:
    repo.sync_retailers(db_session, [sportsshoes.PROFILE])
    created = repo.insert_shoe(db_session, _product(), TS)
    db_session.commit()
    return created


def test_sync_retailers_inserts_once_and_keeps_operator_flag(db_session) -> None:
    assert repo.sync_retailers(db_session, [sportsshoes.PROFILE]) == 1
    db_session.commit()

    db_session.get(Retailer, "sportsshoes").enabled = False
    db_session.commit()

    assert repo.sync_retailers(db_session, [sportsshoes.PROFILE]) == 0
    row = repo.get_retailer(db_session, "sportsshoes")
    assert row.enabled is False
    assert row.url == "https://www.sportsshoes.com"
    assert row.scraping_interval_hours == 24
    assert repo.count_enabled_retailers(db_session) == 0


def test_shoe_ids_by_slug(db_session, shoe) -> None:
    assert repo.shoe_ids_by_slug(db_session, ["hoka-clifton-9", "missing", ""]) == {"hoka-clifton-9": shoe.id}
    assert repo.shoe_ids_by_slug(db_session, []) == {}


def test_touch_shoe_refreshes_list_price(db_session, shoe) -> None:
    later = TS + timedelta(hours=2)
    repo.touch_shoe(db_session, shoe.id, _product(price=90.0, original_price=140.0), later)
    db_session.commit()

    refreshed = db_session.get(Shoe, shoe.id)
    assert refreshed.price == pytest.approx(140.0)


def test_touch_missing_shoe_raises_lookup_error(db_session) -> None:
    with pytest.raises(LookupError):
        repo.touch_shoe(db_session, 999, _product(), TS)


def test_one_observation_per_shoe_retailer_day(db_session, shoe) -> None:
    repo.insert_observation(db_session, shoe_id=shoe.id, retailer_id="sportsshoes", product=_product(), ts_utc=TS)
    db_session.commit()

    with pytest.raises(IntegrityError):
        repo.insert_observation(
            db_session,
            shoe_id=shoe.id,
            retailer_id="sportsshoes",
            product=_product(price=99.0),
            ts_utc=TS + timedelta(hours=1),
        )
    db_session.rollback()


def test_daily_prices_scoped_to_retailer_and_day(db_session, shoe) -> None:
    obs = repo.insert_observation(
        db_session, shoe_id=shoe.id, retailer_id="sportsshoes", product=_product(), ts_utc=TS
    )
    db_session.commit()

    today = repo.daily_prices(db_session, "sportsshoes", [shoe.id], TS.date())
    tomorrow = repo.daily_prices(db_session, "sportsshoes", [shoe.id], (TS + timedelta(days=1)).date())
    elsewhere = repo.daily_prices(db_session, "runnersneed", [shoe.id], TS.date())

    assert today == {shoe.id: repo.DailyPrice(id=obs.id, price=110.0)}
    assert tomorrow == {}
    assert elsewhere == {}


def test_get_latest_observation_orders_by_time(db_session, shoe) -> None:
    repo.insert_observation(
        db_session, shoe_id=shoe.id, retailer_id="sportsshoes", product=_product(price=120.0), ts_utc=TS
    )
    newest = repo.insert_observation(
        db_session,
        shoe_id=shoe.id,
        retailer_id="sportsshoes",
        product=_product(price=95.0),
        ts_utc=TS + timedelta(days=1),
    )
    db_session.commit()

    latest = repo.get_latest_observation(db_session, shoe.id)
    assert latest is not None
    assert latest.id == newest.id
    assert repo.count_observations(db_session) == 2


def test_lower_observation_updates_in_place(db_session, shoe) -> None:
    obs = repo.insert_observation(
        db_session, shoe_id=shoe.id, retailer_id="sportsshoes", product=_product(), ts_utc=TS
    )
    repo.lower_observation(db_session, obs.id, _product(price=99.0, discount_percentage=10.0), TS + timedelta(hours=1))
    db_session.commit()

    stored = db_session.get(PriceObservation, obs.id)
    assert stored.price == pytest.approx(99.0)
    assert stored.discount_percentage == pytest.approx(10.0)
    assert stored.observed_on == TS.date()


def test_list_watchlist_entries_joins_user_and_shoe(db_session, shoe) -> None:
    user = User(email="runner@example.com", fname="Ada")
    db_session.add(user)
    db_session.flush()
    db_session.add_all(
        [
            Watchlist(user_id=user.id, shoe_id=shoe.id, discount=15),
            Watchlist(user_id=user.id, shoe_id=None, discount=30),
            UserPreference(user_id=user.id, email_enabled=True),
        ]
    )
    db_session.commit()

    entries = repo.list_watchlist_entries(db_session)

    assert len(entries) == 1
    entry, joined_user, joined_shoe = entries[0]
    assert entry.discount == pytest.approx(15)
    assert joined_user.email == "runner@example.com"
    assert joined_shoe.slug == "hoka-clifton-9"
    assert repo.get_user_preference(db_session, user.id).email_enabled is True


def test_list_price_prefers_original() -> None:
    assert repo.list_price(_product(price=90.0, original_price=120.0)) == pytest.approx(120.0)
    assert repo.list_price(_product(price=90.0)) == pytest.approx(90.0)
