from __future__ import annotations

import pytest

from speedsale.errors import ExtractionError
from speedsale.extractors import base as extractor_base
from speedsale.extractors.base import RawCard, card_to_product, pick_price_text
from speedsale.normalizers import (
    build_product,
    clean_name,
    compute_discount,
    infer_brand,
    is_valid_product,
    parse_price,
    product_slug,
    slugify,
)
from speedsale.retailers import sportsshoes
from speedsale.retailers.profiles import RetailerProfile, SelectorSet, StrategyKind
from speedsale.schemas import ScrapedProduct

PROFILE = RetailerProfile(
    id="shop",
    name="Shop",
    base_url="https://shop.example",
    strategy=StrategyKind.STATIC,
    selectors=SelectorSet(container=".card", name=".name", price=".price", image="img", link="a"),
)


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("£89.99", 89.99),
        ("£89.99 RRP £129.99", 89.99),
        ("Now £1,299.00", 1299.0),
        ("£1,299", 1299.0),
        ("12,50 €", 12.5),
        ("1.299,95 €", 1299.95),
        ("$45", 45.0),
        ("", 0.0),
        (None, 0.0),
        ("Sold out", 0.0),
        ("£0.00", 0.0),
    ],
)
def test_parse_price(text, expected) -> None:
    assert parse_price(text) == pytest.approx(expected)


def test_infer_brand_prefers_longest_leading_brand() -> None:
    assert infer_brand("New Balance Fresh Foam X 1080v13") == "New Balance"
    assert infer_brand("Under Armour Flow Velociti") == "Under Armour"
    assert infer_brand("Salomon Speedcross 6") == "Salomon"


def test_infer_brand_short_names_need_whole_words() -> None:
    assert infer_brand("On Cloudmonster 2") == "On"
    assert infer_brand("Cloudmonster by On") == "On"
    # "on" inside another word is not the On brand
    assert infer_brand("Moonlight Trainer") == "Unknown"


def test_infer_brand_unknown() -> None:
    assert infer_brand("Mystery Racer") == "Unknown"
    assert infer_brand("") == "Unknown"
    assert infer_brand(None) == "Unknown"


def test_clean_name_strips_promo_phrase_and_season() -> None:
    raw = "Free Premium Delivery Hoka Clifton 9 Men's Running Shoes - AW23"
    assert clean_name(raw) == "Hoka Clifton 9"


def test_clean_name_cuts_at_currency() -> None:
    assert clean_name("Nike Air Zoom Pegasus 40 £89.99 RRP £129.99") == "Nike Air Zoom Pegasus 40"


def test_clean_name_season_code_only() -> None:
    assert clean_name("Asics Gel-Kayano 30 - SS24") == "Asics Gel-Kayano 30"


def test_clean_name_spikes_phrase() -> None:
    assert clean_name("Nike ZoomX Dragonfly Running Spikes") == "Nike ZoomX Dragonfly"


def test_slugify_rules() -> None:
    assert slugify("Nike Air Zoom Pegasus 40") == "nike-air-zoom-pegasus-40"
    assert slugify("  Asics  Gel-Kayano 30 ") == "asics-gelkayano-30"
    assert slugify("Brooks Ghost 15 (Wide)") == "brooks-ghost-15-wide"
    assert slugify("") == ""


def test_slug_is_deterministic_for_identical_cleaned_text() -> None:
    first = product_slug("Nike", "Air Zoom Pegasus 40")
    second = product_slug("Nike", clean_name("Air Zoom Pegasus 40 £79.99"))
    assert first == second == "nike-air-zoom-pegasus-40"


def test_compute_discount() -> None:
    assert compute_discount(89.99, 129.99) == pytest.approx(30.77, abs=0.01)
    assert compute_discount(100.0, 100.0) is None
    assert compute_discount(100.0, 90.0) is None
    assert compute_discount(100.0, None) is None


def test_pick_price_text_prefers_currency_amount() -> None:
    assert pick_price_text(["Sale", "£89.99", "£129.99"]) == "£89.99"
    assert pick_price_text(["", "  "]) is None
    assert pick_price_text(["89.99"]) == "89.99"


def test_end_to_end_card_to_product() -> None:
    card = RawCard(
        name="Nike Air Zoom Pegasus 40 £89.99 RRP £129.99",
        price_text="£89.99",
        original_price_text="RRP £129.99",
        image_url="//cdn.shop.example/pegasus.jpg",
        href="/product/nike/air-zoom-pegasus-40/",
    )

    product = build_product(PROFILE, card, category="road")

    assert product is not None
    assert product.name == "Nike Air Zoom Pegasus 40"
    assert product.brand == "Nike"
    assert product.model == "Air Zoom Pegasus 40"
    assert product.price == pytest.approx(89.99)
    assert product.original_price == pytest.approx(129.99)
    assert product.discount_percentage == pytest.approx(30.8, abs=0.05)
    assert product.slug == "nike-air-zoom-pegasus-40"
    assert product.product_url == "https://shop.example/product/nike/air-zoom-pegasus-40/"
    assert product.image_url == "https://cdn.shop.example/pegasus.jpg"
    assert product.category == "road"


def test_build_product_rejects_incomplete_cards() -> None:
    assert build_product(PROFILE, RawCard(name="Nike Pegasus", price_text="£80")) is None
    assert build_product(PROFILE, RawCard(name="Nike Pegasus", price_text="Sold out", href="/p")) is None
    assert build_product(PROFILE, RawCard(price_text="£80", href="/p")) is None


def test_card_to_product_drops_incomplete_cards() -> None:
    assert card_to_product(PROFILE, RawCard(name="Nike Pegasus", price_text="£80")) is None
    product = card_to_product(PROFILE, RawCard(name="Nike Pegasus 40", price_text="£80", href="/p/1"))
    assert product is not None
    assert product.product_url == "https://shop.example/p/1"


def test_card_to_product_wraps_coercion_failures(monkeypatch) -> None:
    def broken(*_args, **_kwargs):
        raise ValueError("price must be positive")

    monkeypatch.setattr(extractor_base, "build_product", broken)

    with pytest.raises(ExtractionError) as excinfo:
        card_to_product(PROFILE, RawCard(name="Nike Pegasus", price_text="£80", href="/p/1"), category="road")

    assert excinfo.value.stage == "extract"
    assert excinfo.value.retailer == "shop"
    assert "price must be positive" in str(excinfo.value)


def test_scraped_product_drops_unknown_fields() -> None:
    product = ScrapedProduct(name="Nike Pegasus", price=80.0, sizes=["UK 9"], colors=["Black"])

    assert set(product.model_dump()).isdisjoint({"sizes", "colors"})


def test_validity_gate() -> None:
    good = ScrapedProduct(name="Nike Pegasus", brand="Nike", price=80.0, product_url="https://x/p")
    assert is_valid_product(good) is True
    assert is_valid_product(good.model_copy(update={"product_url": ""})) is False
    assert is_valid_product(good.model_copy(update={"price": 0.0})) is False
    assert is_valid_product(good.model_copy(update={"brand": ""})) is False


def test_sportsshoes_gender_from_url() -> None:
    assert sportsshoes.infer_gender("https://www.sportsshoes.com/products/mens/running/shoes") == "male"
    assert sportsshoes.infer_gender("https://www.sportsshoes.com/products/womens/running/shoes") == "female"
    assert sportsshoes.infer_gender("https://www.sportsshoes.com/product/nike/pegasus/") == "unisex"


def test_sportsshoes_post_process_trims_gender_words() -> None:
    product = ScrapedProduct(name="Brooks Ghost 15 Womens", brand="Brooks", price=99.99)

    processed = sportsshoes.process_product(
        product, "https://www.sportsshoes.com/products/womens/running/shoes/ghost-15"
    )

    assert processed.name == "Brooks Ghost 15"
    assert processed.model == "Ghost 15"
    assert processed.gender == "female"


def test_sportsshoes_profile_builds_slug_after_post_process() -> None:
    card = RawCard(
        name="Brooks Ghost 15 Women's Running Shoes £99.99",
        price_text="£99.99",
        href="/products/womens/brooks-ghost-15",
    )

    product = build_product(sportsshoes.PROFILE, card, category="women")

    assert product is not None
    assert product.gender == "female"
    assert product.slug == "brooks-ghost-15"
