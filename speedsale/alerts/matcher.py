"""Match watchlist thresholds against the latest observed prices."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from speedsale.logging_config import get_logger
from speedsale.schemas import AlertShoe, AlertUser, PriceAlertPayload
from speedsale.storage import repo
from speedsale.storage.models_sql import PriceObservation, Shoe, User, Watchlist

LOGGER = get_logger(__name__)

DEFAULT_THRESHOLD = 10.0


class AlertSender(Protocol):
    def send_price_alert(self, payload: PriceAlertPayload) -> bool:
        ...


@dataclass
class AlertSummary:
    sent: int = 0
    skipped: int = 0
    failed: int = 0


def infer_original_price(price: float, discount_percentage: float) -> float:
    """Back out the pre-discount price from a sale price and its discount."""

    if discount_percentage <= 0 or discount_percentage >= 100:
        return price
    return round(price / (1 - discount_percentage / 100), 2)


def build_alert_payload(
    entry: Watchlist,
    user: User,
    shoe: Shoe,
    observation: PriceObservation,
    *,
    threshold: float,
    app_url: str,
) -> PriceAlertPayload:
    price = float(observation.price or 0)
    discount = float(observation.discount_percentage or 0)
    original = observation.original_price or infer_original_price(price, discount)
    product_url = observation.product_url or f"{app_url.rstrip('/')}/shoes/{shoe.slug}"
    return PriceAlertPayload(
        user=AlertUser(id=user.id, email=user.email, fname=user.fname, sname=user.sname),
        shoe=AlertShoe(
            id=shoe.id,
            brand=shoe.brand,
            model=shoe.model,
            image_url=shoe.image_url,
            category=shoe.category,
            gender=shoe.gender,
            slug=shoe.slug,
        ),
        current_price=price,
        original_price=float(original),
        discount_percentage=discount,
        user_discount_threshold=threshold,
        product_url=product_url,
        size=observation.size or "Various",
        color=observation.color or "Various",
    )


class AlertMatcher:
    """Walk every watchlist entry and notify users whose threshold is met.

    No alert history is kept: an entry whose shoe stays above its threshold is
    alerted again on every pass.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        notifier: AlertSender,
        *,
        default_threshold: float = DEFAULT_THRESHOLD,
        app_url: str = "https://speedsale.vercel.app",
    ) -> None:
        self._session_factory = session_factory
        self._notifier = notifier
        self._default_threshold = default_threshold
        self._app_url = app_url

    def match_and_notify(self) -> AlertSummary:
        summary = AlertSummary()
        with self._session_factory() as session:
            entries = repo.list_watchlist_entries(session)
            LOGGER.info("Analysing watchlists | count=%d", len(entries))
            for entry, user, shoe in entries:
                try:
                    self._evaluate(session, entry, user, shoe, summary)
                except SQLAlchemyError as exc:
                    session.rollback()
                    summary.failed += 1
                    LOGGER.warning(
                        "Watchlist evaluation failed | watchlist=%s shoe=%s error=%s",
                        entry.id,
                        shoe.id,
                        exc,
                    )

        LOGGER.info(
            "Alert pass complete | sent=%d skipped=%d failed=%d",
            summary.sent,
            summary.skipped,
            summary.failed,
        )
        return summary

    def _evaluate(
        self,
        session: Session,
        entry: Watchlist,
        user: User,
        shoe: Shoe,
        summary: AlertSummary,
    ) -> None:
        preference = repo.get_user_preference(session, user.id)
        if preference is not None and preference.email_enabled is False:
            summary.skipped += 1
            return

        observation = repo.get_latest_observation(session, shoe.id)
        if observation is None or observation.price is None or observation.discount_percentage is None:
            return

        threshold = entry.discount if entry.discount is not None else self._default_threshold
        if observation.discount_percentage < threshold:
            return

        payload = build_alert_payload(
            entry, user, shoe, observation, threshold=threshold, app_url=self._app_url
        )
        if self._notifier.send_price_alert(payload):
            summary.sent += 1
            LOGGER.info(
                "Alert sent | user=%s shoe=%s discount=%.1f threshold=%s",
                user.email,
                shoe.slug,
                observation.discount_percentage,
                threshold,
            )
        else:
            summary.failed += 1
            LOGGER.warning("Alert not delivered | user=%s shoe=%s", user.email, shoe.slug)
