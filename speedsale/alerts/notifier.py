"""Email notification helpers (Mailgun HTTP API)."""

from __future__ import annotations

import html
import os
import re
import time
from string import Template
from typing import Any

import requests
from bs4 import BeautifulSoup
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from speedsale.logging_config import get_logger
from speedsale.schemas import AlertShoe, AlertUser, PriceAlertPayload, WelcomeEmailPayload

LOGGER = get_logger(__name__)

DEFAULT_API_BASE = "https://api.mailgun.net"
DEFAULT_APP_URL = "https://speedsale.vercel.app"

PRICE_ALERT_TEMPLATE = Template(
    """<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h1>SpeedSale price alert</h1>
  <p>Hi $first_name,</p>
  <p>A shoe on your watchlist just passed your $threshold% discount target.</p>
  <table>
    <tr><td><img src="$image_url" alt="$brand $model" width="120" height="120"></td>
        <td><h2>$brand $model</h2>
            <p>Now <strong>&pound;$current_price</strong> (was &pound;$original_price)</p>
            <p>$discount% off</p>
            <p>Size: $size | Colour: $color</p></td></tr>
  </table>
  <p><a href="$product_url">View deal</a></p>
  <p style="font-size: 12px;"><a href="$unsubscribe_url">Manage your alerts</a></p>
</div>"""
)

WELCOME_TEMPLATE = Template(
    """<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h1>Welcome to SpeedSale</h1>
  <p>Hi $first_name,</p>
  <p>Add running shoes to your watchlist and we will email you when they hit your discount target.</p>
  <p><a href="$dashboard_url">Open your dashboard</a></p>
  <p><a href="$profile_url">Update your alert preferences</a></p>
</div>"""
)


class TransientDeliveryError(RuntimeError):
    """Raised for transport responses worth retrying (5xx, 429)."""


def _escape(value: Any) -> str:
    return html.escape("" if value is None else str(value), quote=True)


def html_to_text(markup: str) -> str:
    """Plain-text alternative for an HTML body."""

    text = BeautifulSoup(markup, "html.parser").get_text(" ")
    return re.sub(r"\s+", " ", text).strip()


def price_alert_subject(payload: PriceAlertPayload) -> str:
    name = " ".join(part for part in (payload.shoe.brand, payload.shoe.model) if part) or "Your shoe"
    return f"Price Alert: {name} - {payload.discount_percentage:.1f}% off!"


def render_price_alert(payload: PriceAlertPayload, *, app_url: str = DEFAULT_APP_URL) -> str:
    return PRICE_ALERT_TEMPLATE.substitute(
        first_name=_escape(payload.user.fname or "there"),
        threshold=_escape(f"{payload.user_discount_threshold:g}"),
        image_url=_escape(payload.shoe.image_url or ""),
        brand=_escape(payload.shoe.brand or ""),
        model=_escape(payload.shoe.model or ""),
        current_price=f"{payload.current_price:.2f}",
        original_price=f"{payload.original_price:.2f}",
        discount=f"{payload.discount_percentage:.1f}",
        size=_escape(payload.size or "Various"),
        color=_escape(payload.color or "Various"),
        product_url=_escape(payload.product_url or "#"),
        unsubscribe_url=_escape(f"{app_url.rstrip('/')}/profile"),
    )


def render_welcome(payload: WelcomeEmailPayload) -> str:
    return WELCOME_TEMPLATE.substitute(
        first_name=_escape(payload.user.fname or "there"),
        dashboard_url=_escape(payload.dashboard_url),
        profile_url=_escape(payload.profile_url),
    )


def sample_price_alert(to: str) -> PriceAlertPayload:
    """Fixed sample alert used to verify the mail transport end to end."""

    return PriceAlertPayload(
        user=AlertUser(id="test-user", email=to, fname="Test", sname="User"),
        shoe=AlertShoe(
            id="test-shoe",
            brand="Nike",
            model="Air Zoom Pegasus 40",
            image_url="https://via.placeholder.com/120x120?text=Test+Shoe",
            category="Running",
            gender="Unisex",
        ),
        current_price=89.99,
        original_price=129.99,
        discount_percentage=30.8,
        size="UK 9",
        color="Black/White",
        product_url="https://www.sportsshoes.com/product/nike/air-zoom-pegasus-40/",
        user_discount_threshold=20,
    )


class EmailNotifier:
    """Send alert emails through Mailgun when credentials are present.

    Every public ``send_*`` method returns ``True`` only when the transport
    accepted the message; failures and missing credentials are logged and
    reported as ``False``.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        domain: str | None = None,
        from_email: str | None = None,
        api_base: str | None = None,
        app_url: str | None = None,
        min_interval: float = 1.0,
        timeout: float = 8,
    ) -> None:
        self._api_key = api_key if api_key is not None else os.getenv("MAILGUN_API_KEY")
        self._domain = domain if domain is not None else os.getenv("MAILGUN_DOMAIN")
        self._from_email = from_email if from_email is not None else os.getenv("MAILGUN_FROM_EMAIL")
        self._api_base = (api_base or os.getenv("MAILGUN_API_BASE") or DEFAULT_API_BASE).rstrip("/")
        self._app_url = app_url or DEFAULT_APP_URL
        self._min_interval = min_interval
        self._timeout = timeout
        self._last_send = 0.0

    @property
    def configured(self) -> bool:
        return bool(self._api_key and self._domain and self._from_email)

    def send_price_alert(self, payload: PriceAlertPayload) -> bool:
        body = render_price_alert(payload, app_url=self._app_url)
        subject = price_alert_subject(payload)
        LOGGER.info(
            "Sending price alert | to=%s shoe=%s discount=%.1f",
            payload.user.email,
            payload.shoe.slug or payload.shoe.id,
            payload.discount_percentage,
        )
        return self._dispatch(payload.user.email, subject, body)

    def send_welcome_email(self, payload: WelcomeEmailPayload) -> bool:
        body = render_welcome(payload)
        subject = f"Welcome to SpeedSale, {payload.user.fname or 'there'}!"
        LOGGER.info("Sending welcome email | to=%s", payload.user.email)
        return self._dispatch(payload.user.email, subject, body)

    def send_test_email(self, to: str) -> bool:
        return self.send_price_alert(sample_price_alert(to))

    def _dispatch(self, to: str, subject: str, body: str) -> bool:
        if not self.configured:
            LOGGER.debug("Email (noop): to=%s subject=%s", to, subject)
            return False
        message = {
            "from": self._from_email,
            "to": [to],
            "subject": subject,
            "text": html_to_text(body),
            "html": body,
        }
        try:
            self._send_mailgun(message)
        except (requests.RequestException, RuntimeError) as exc:
            LOGGER.warning("Email delivery failed | to=%s error=%s", to, exc)
            return False
        LOGGER.info("Email sent | to=%s", to)
        return True

    def _throttle(self) -> None:
        elapsed = time.monotonic() - self._last_send
        if elapsed < self._min_interval:
            time.sleep(self._min_interval - elapsed)
        self._last_send = time.monotonic()

    @retry(
        retry=retry_if_exception_type(
            (TransientDeliveryError, requests.ConnectionError, requests.Timeout)
        ),
        wait=wait_exponential(multiplier=0.5, max=10),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    def _send_mailgun(self, message: dict[str, Any]) -> None:
        self._throttle()
        response = requests.post(
            f"{self._api_base}/v3/{self._domain}/messages",
            auth=("api", self._api_key or ""),
            data=message,
            timeout=self._timeout,
        )
        if response.status_code == 429 or response.status_code >= 500:
            raise TransientDeliveryError(f"HTTP {response.status_code}")
        if response.status_code >= 300:
            raise RuntimeError(f"HTTP {response.status_code}")
