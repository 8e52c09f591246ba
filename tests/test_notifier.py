from __future__ import annotations

import pytest
import requests

from speedsale.alerts import notifier as notifier_module
from speedsale.alerts.notifier import (
    EmailNotifier,
    html_to_text,
    price_alert_subject,
    render_price_alert,
    sample_price_alert,
)
from speedsale.schemas import AlertShoe, AlertUser, PriceAlertPayload, WelcomeEmailPayload


class FakeResponse:
    def __init__(self, status_code: int) -> None:
        self.status_code = status_code


class RecordingPost:
    def __init__(self, *statuses: int) -> None:
        self.statuses = list(statuses) or [200]
        self.calls: list[dict] = []

    def __call__(self, url, **kwargs):
        self.calls.append({"url": url, **kwargs})
        status = self.statuses[min(len(self.calls) - 1, len(self.statuses) - 1)]
        return FakeResponse(status)


def _notifier(**overrides) -> EmailNotifier:
    options = {
        "api_key": "key-123",
        "domain": "mg.speedsale.example",
        "from_email": "SpeedSale <alerts@speedsale.example>",
        "app_url": "https://speedsale.example",
        "min_interval": 0,
    }
    options.update(overrides)
    return EmailNotifier(**options)


def _payload(**overrides) -> PriceAlertPayload:
    data = {
        "user": AlertUser(id=1, email="runner@example.com", fname="<b>Ada</b>", sname=None),
        "shoe": AlertShoe(id=7, brand="Nike", model="Air Zoom Pegasus 40", slug="nike-air-zoom-pegasus-40"),
        "current_price": 89.99,
        "original_price": 129.99,
        "discount_percentage": 30.77,
        "user_discount_threshold": 20,
        "product_url": "https://www.sportsshoes.com/product/nike/pegasus-40/?a=1&b=2",
    }
    data.update(overrides)
    return PriceAlertPayload(**data)


def test_unconfigured_notifier_is_a_noop(monkeypatch) -> None:
    for name in ("MAILGUN_API_KEY", "MAILGUN_DOMAIN", "MAILGUN_FROM_EMAIL"):
        monkeypatch.delenv(name, raising=False)

    def fail_post(*_args, **_kwargs):
        raise AssertionError("transport must not be called")

    monkeypatch.setattr(notifier_module.requests, "post", fail_post)
    notifier = EmailNotifier(min_interval=0)

    assert notifier.configured is False
    assert notifier.send_price_alert(_payload()) is False


def test_price_alert_posts_to_mailgun(monkeypatch) -> None:
    post = RecordingPost(200)
    monkeypatch.setattr(notifier_module.requests, "post", post)

    assert _notifier().send_price_alert(_payload()) is True

    assert len(post.calls) == 1
    call = post.calls[0]
    assert call["url"] == "https://api.mailgun.net/v3/mg.speedsale.example/messages"
    assert call["auth"] == ("api", "key-123")
    data = call["data"]
    assert data["to"] == ["runner@example.com"]
    assert data["from"] == "SpeedSale <alerts@speedsale.example>"
    assert data["subject"] == "Price Alert: Nike Air Zoom Pegasus 40 - 30.8% off!"
    assert "&lt;b&gt;Ada&lt;/b&gt;" in data["html"]
    assert "<b>Ada</b>" not in data["html"]
    assert "?a=1&amp;b=2" in data["html"]
    assert "89.99" in data["text"]
    assert "<div" not in data["text"]
    assert "https://speedsale.example/profile" in data["html"]


def test_api_base_override(monkeypatch) -> None:
    post = RecordingPost(200)
    monkeypatch.setattr(notifier_module.requests, "post", post)

    _notifier(api_base="https://api.eu.mailgun.net/").send_price_alert(_payload())

    assert post.calls[0]["url"] == "https://api.eu.mailgun.net/v3/mg.speedsale.example/messages"


def test_client_error_is_not_retried(monkeypatch) -> None:
    post = RecordingPost(401)
    monkeypatch.setattr(notifier_module.requests, "post", post)

    assert _notifier().send_price_alert(_payload()) is False
    assert len(post.calls) == 1


def test_server_error_is_retried_then_reported(monkeypatch) -> None:
    post = RecordingPost(503, 503, 200)
    monkeypatch.setattr(notifier_module.requests, "post", post)

    assert _notifier().send_price_alert(_payload()) is True
    assert len(post.calls) == 3


def test_welcome_email(monkeypatch) -> None:
    post = RecordingPost(200)
    monkeypatch.setattr(notifier_module.requests, "post", post)
    payload = WelcomeEmailPayload(
        user=AlertUser(id=3, email="new@example.com", fname="Grace"),
        dashboard_url="https://speedsale.example/dashboard",
        profile_url="https://speedsale.example/profile",
    )

    assert _notifier().send_welcome_email(payload) is True

    data = post.calls[0]["data"]
    assert data["subject"] == "Welcome to SpeedSale, Grace!"
    assert 'href="https://speedsale.example/dashboard"' in data["html"]


def test_test_email_uses_sample_alert(monkeypatch) -> None:
    post = RecordingPost(200)
    monkeypatch.setattr(notifier_module.requests, "post", post)

    assert _notifier().send_test_email("ops@example.com") is True

    data = post.calls[0]["data"]
    assert data["to"] == ["ops@example.com"]
    assert data["subject"] == "Price Alert: Nike Air Zoom Pegasus 40 - 30.8% off!"


def test_rendering_defaults() -> None:
    payload = _payload(user=AlertUser(id=1, email="x@example.com"), product_url=None)

    body = render_price_alert(payload)

    assert "Hi there," in body
    assert 'href="#"' in body
    assert "Size: Various" in body
    assert "https://speedsale.vercel.app/profile" in body


def test_subject_without_brand() -> None:
    payload = _payload(shoe=AlertShoe(id=1))
    assert price_alert_subject(payload) == "Price Alert: Your shoe - 30.8% off!"


def test_html_to_text() -> None:
    assert html_to_text("<p>Hello <b>runner</b></p>\n<p>Bye</p>") == "Hello runner Bye"


def test_sample_alert_addresses_recipient() -> None:
    sample = sample_price_alert("ops@example.com")
    assert sample.user.email == "ops@example.com"
    assert sample.current_price == pytest.approx(89.99)


def test_connection_error_reports_false(monkeypatch) -> None:
    def broken_post(*_args, **_kwargs):
        raise requests.ConnectionError("no route to host")

    monkeypatch.setattr(notifier_module.requests, "post", broken_post)

    assert _notifier().send_price_alert(_payload()) is False
