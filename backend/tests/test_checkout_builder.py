import asyncio
import json
from types import SimpleNamespace

import pytest
from sqlalchemy import select

from photovouchers.core import metrics
from photovouchers.core.config import settings
from photovouchers.core.errors import PaymentProviderError, ValidationError
from photovouchers.models.checkout import PendingCheckout
from photovouchers.schemas.checkout import CartLineItem, VoucherPersonalization
from photovouchers.services import checkout as checkout_service
from photovouchers.services import payments
from photovouchers.services.coupons import CouponResolver


def _resolver(entries) -> CouponResolver:
    return CouponResolver(lambda: json.dumps(entries))


VCWIEN = {"code": "VCWIEN", "type": "percent", "value": 20, "skus": ["Family-Basic"]}


def _line(**data) -> CartLineItem:
    return CartLineItem.model_validate(data)


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("Familien-Fotoshooting Basic", "family-basic"),
        ("Family Premium Package", "family-premium"),
        ("Neugeborenen Shooting Deluxe", "newborn-deluxe"),
        ("Babybauch Basic", "maternity-basic"),
        ("Schwangerschaft Premium", "maternity-premium"),
        ("Business Headshots Basic", None),
        ("Familie Gutschein", None),
        ("", None),
    ],
)
def test_derive_sku(name, expected) -> None:
    assert checkout_service.derive_sku(name) == expected


def test_price_cart_applies_percentage_to_allowed_sku() -> None:
    cart = checkout_service.price_cart(
        [_line(sku="Family-Basic", name="Family Basic", price=9500, quantity=1)],
        "vcwien",
        resolver=_resolver([VCWIEN]),
    )
    assert cart.applied_code == "VCWIEN"
    assert cart.lines[0].unit_cents == 7600
    assert cart.subtotal_cents == 9500
    assert cart.discount_cents == 1900


def test_price_cart_ignores_client_discounted_price_fields() -> None:
    item = CartLineItem.model_validate(
        {"sku": "family-basic", "name": "Family Basic", "price": 9500, "discountedPrice": 100, "quantity": 2}
    )
    cart = checkout_service.price_cart([item], "VCWIEN", resolver=_resolver([VCWIEN]))
    assert cart.lines[0].unit_cents == 7600
    assert cart.total_cents == 15200


def test_price_cart_only_discounts_matching_lines() -> None:
    cart = checkout_service.price_cart(
        [
            _line(sku="family-basic", name="Family Basic", price=9500),
            _line(sku="business-basic", name="Business", price=20000),
        ],
        "VCWIEN",
        resolver=_resolver([VCWIEN]),
    )
    assert [line.unit_cents for line in cart.lines] == [7600, 20000]


def test_price_cart_uses_derived_sku_for_legacy_lines() -> None:
    cart = checkout_service.price_cart(
        [_line(name="Familien Shooting Basic", price=9500)],
        "VCWIEN",
        resolver=_resolver([VCWIEN]),
    )
    assert cart.lines[0].sku == "family-basic"
    assert cart.lines[0].unit_cents == 7600


@pytest.mark.parametrize(
    ("entries", "lines", "reason"),
    [
        ([VCWIEN], [{"sku": "business-basic", "name": "Business", "price": 9500}], "no_eligible_items"),
        ([{**VCWIEN, "endsAt": "2020-01-01T00:00:00Z"}], [{"sku": "family-basic", "name": "F", "price": 9500}], "inactive"),
        ([{**VCWIEN, "minOrderCents": 10000}], [{"sku": "family-basic", "name": "F", "price": 9500}], "below_minimum"),
        ([VCWIEN], [{"sku": "family-basic", "name": "F", "price": 9500}], None),
    ],
)
def test_price_cart_rejections(entries, lines, reason) -> None:
    cart = checkout_service.price_cart([_line(**data) for data in lines], "VCWIEN", resolver=_resolver(entries))
    assert cart.rejection == reason
    if reason:
        assert cart.applied_code is None
        assert cart.discount_cents == 0


def test_unknown_code_is_rejected() -> None:
    cart = checkout_service.price_cart(
        [_line(sku="family-basic", name="F", price=9500)], "NOPE", resolver=_resolver([VCWIEN])
    )
    assert cart.rejection == "unknown_code"
    assert cart.total_cents == 9500


def test_build_session_params() -> None:
    cart = checkout_service.price_cart(
        [_line(sku="family-basic", name="Family Basic", price=9500, description="Shooting")],
        "VCWIEN",
        resolver=_resolver([VCWIEN]),
    )
    personalization = VoucherPersonalization.model_validate(
        {"recipientName": "Anna", "recipientEmail": "anna@example.com", "personalMessage": "x" * 900, "deliveryMethod": "post"}
    )
    params = checkout_service.build_session_params(cart, customer_email="buyer@example.com", personalization=personalization)

    assert params["mode"] == "payment"
    assert params["allow_promotion_codes"] is False
    assert params["payment_method_types"] == ["card", "klarna"]
    assert params["locale"] == "de"
    assert params["customer_email"] == "buyer@example.com"
    assert params["shipping_address_collection"] == {"allowed_countries": ["DE", "AT", "CH"]}
    assert params["success_url"].endswith("/checkout/success?session_id={CHECKOUT_SESSION_ID}")
    line = params["line_items"][0]
    assert line["price_data"]["unit_amount"] == 7600
    assert line["price_data"]["currency"] == "eur"
    assert line["price_data"]["product_data"]["metadata"] == {"sku": "family-basic"}
    metadata = params["metadata"]
    assert metadata["voucher_used"] == "VCWIEN"
    assert metadata["delivery_method"] == "post"
    assert len(metadata["voucher_data"]) == settings.voucher_metadata_limit


def test_metadata_sentinel_without_coupon() -> None:
    cart = checkout_service.price_cart([_line(sku="family-basic", name="F", price=9500)])
    params = checkout_service.build_session_params(cart, customer_email=None, personalization=None)
    assert params["metadata"]["voucher_used"] == "none"
    assert "voucher_data" not in params["metadata"]
    assert "shipping_address_collection" not in params
    assert "customer_email" not in params


def test_empty_cart_never_calls_provider(session_factory, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "stripe_secret_key", "sk_test_real")

    async def fail_create(params):
        raise AssertionError("provider must not be called")

    monkeypatch.setattr(payments, "create_checkout_session", fail_create)

    async def run() -> None:
        async with session_factory() as session:
            with pytest.raises(ValidationError):
                await checkout_service.create_checkout_session(session, [])
            with pytest.raises(ValidationError):
                await checkout_service.create_checkout_session(session, [_line(name="Free", price=0)])

    asyncio.run(run())


def test_personalization_needs_a_recipient_email(session_factory) -> None:
    async def run() -> None:
        async with session_factory() as session:
            with pytest.raises(ValidationError):
                await checkout_service.create_checkout_session(
                    session,
                    [_line(sku="family-basic", name="F", price=9500)],
                    personalization=VoucherPersonalization(recipient_name="Anna"),
                )

    asyncio.run(run())


def test_mock_session_when_stripe_unconfigured(session_factory) -> None:
    async def run():
        async with session_factory() as session:
            result = await checkout_service.create_checkout_session(
                session,
                [_line(sku="family-basic", name="Family Basic", price=9500)],
                coupon_code="vcwien",
                customer_email="buyer@example.com",
                resolver=_resolver([VCWIEN]),
            )
            pending = (
                await session.execute(
                    select(PendingCheckout).where(PendingCheckout.checkout_session_id == result.session_id)
                )
            ).scalar_one()
            return result, pending

    result, pending = asyncio.run(run())
    assert result.is_mock
    assert result.session_id.startswith("cs_mock_")
    assert result.url == f"{settings.frontend_origin}/checkout/success?session_id={result.session_id}"
    assert pending.is_mock
    assert pending.coupon_code == "VCWIEN"
    assert pending.total_cents == 7600
    assert pending.line_items[0]["unit_cents"] == 7600
    assert metrics.snapshot()["mock_checkout_sessions"] == 1


def test_real_session_sends_discounted_line_items(session_factory, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "stripe_secret_key", "sk_test_real")
    captured: dict[str, object] = {}

    def fake_create(**kwargs):
        captured.update(kwargs)
        return SimpleNamespace(id="cs_test_123", url="https://checkout.stripe.test/cs_test_123")

    monkeypatch.setattr(payments.stripe.checkout.Session, "create", fake_create)

    async def run():
        async with session_factory() as session:
            return await checkout_service.create_checkout_session(
                session,
                [_line(sku="Family-Basic", name="Family Basic", price=9500)],
                coupon_code="VCWIEN",
                personalization=VoucherPersonalization(recipient_email="anna@example.com"),
                resolver=_resolver([VCWIEN]),
            )

    result = asyncio.run(run())
    assert result.session_id == "cs_test_123"
    assert result.url == "https://checkout.stripe.test/cs_test_123"
    assert not result.is_mock
    assert captured["line_items"][0]["price_data"]["unit_amount"] == 7600
    assert captured["allow_promotion_codes"] is False
    assert metrics.snapshot()["checkout_sessions"] == 1


def test_provider_rejection_raises_payment_provider_error(session_factory, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "stripe_secret_key", "sk_test_real")

    class CardError(Exception):
        http_status = 400
        user_message = "Invalid currency"

    calls = {"count": 0}

    def fake_create(**kwargs):
        calls["count"] += 1
        raise CardError("bad request")

    monkeypatch.setattr(payments.stripe.checkout.Session, "create", fake_create)

    async def run() -> None:
        async with session_factory() as session:
            await checkout_service.create_checkout_session(session, [_line(sku="x", name="F", price=9500)])

    with pytest.raises(PaymentProviderError) as excinfo:
        asyncio.run(run())
    assert excinfo.value.provider_status == 400
    assert excinfo.value.provider_message == "Invalid currency"
    assert calls["count"] == 1
