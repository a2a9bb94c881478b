from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field as dataclass_field
from datetime import datetime, timezone
from typing import Any, Sequence

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from photovouchers.core import metrics
from photovouchers.core.config import settings
from photovouchers.core.errors import PaymentProviderError, PersistenceError, ValidationError
from photovouchers.core.startup_checks import is_production
from photovouchers.models.checkout import PendingCheckout
from photovouchers.models.voucher import DeliveryMethod, GeneratedVoucher
from photovouchers.schemas.checkout import CartLineItem, CheckoutSessionSummary, VoucherPersonalization
from photovouchers.services import payments
from photovouchers.services.coupon_usage import record_coupon_usage
from photovouchers.services.coupons import (
    Coupon,
    CouponResolver,
    discounted_unit_amount,
    get_coupon_resolver,
    normalize_code,
)
from photovouchers.services.payment_provider import is_mock_payments, is_mock_session_id
from photovouchers.services.vouchers import (
    GiftVoucherCreate,
    create_gift_voucher,
    deliver_voucher,
    get_voucher_for_session,
    is_delivery_due,
)

logger = logging.getLogger(__name__)

NO_COUPON = "none"
PAID_STATUSES = frozenset({"paid", "no_payment_required"})

_SKU_FAMILIES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("maternity", ("maternity", "babybauch", "schwangerschaft")),
    ("newborn", ("newborn", "neugeboren")),
    ("family", ("family", "familie")),
)
_SKU_TIERS = ("basic", "premium", "deluxe")


def derive_sku(name: str | None) -> str | None:
    """Best-effort SKU for legacy cart lines that carry only a product name.

    Only the three shoot families at the three package tiers are recognised;
    anything else gets no SKU and therefore no coupon discount.
    """
    lowered = (name or "").lower()
    family = next((key for key, words in _SKU_FAMILIES if any(w in lowered for w in words)), None)
    tier = next((t for t in _SKU_TIERS if t in lowered), None)
    if family is None or tier is None:
        return None
    return f"{family}-{tier}"


@dataclass(frozen=True)
class PricedLine:
    name: str
    sku: str | None
    quantity: int
    base_unit_cents: int
    unit_cents: int
    description: str | None = None

    @property
    def base_total_cents(self) -> int:
        return self.base_unit_cents * self.quantity

    @property
    def total_cents(self) -> int:
        return self.unit_cents * self.quantity

    def as_record(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "sku": self.sku,
            "quantity": self.quantity,
            "base_unit_cents": self.base_unit_cents,
            "unit_cents": self.unit_cents,
            "description": self.description,
        }


@dataclass(frozen=True)
class PricedCart:
    lines: tuple[PricedLine, ...]
    requested_code: str | None = None
    coupon: Coupon | None = None
    rejection: str | None = None

    @property
    def applied_code(self) -> str | None:
        return self.coupon.code if self.coupon else None

    @property
    def subtotal_cents(self) -> int:
        return sum(line.base_total_cents for line in self.lines)

    @property
    def total_cents(self) -> int:
        return sum(line.total_cents for line in self.lines)

    @property
    def discount_cents(self) -> int:
        return self.subtotal_cents - self.total_cents

    @property
    def quantity(self) -> int:
        return sum(line.quantity for line in self.lines)


def _base_lines(items: Sequence[CartLineItem]) -> list[PricedLine]:
    lines = []
    for item in items:
        sku = (item.sku or derive_sku(item.name) or "").strip().lower() or None
        lines.append(
            PricedLine(
                name=item.name,
                sku=sku,
                quantity=int(item.quantity),
                base_unit_cents=int(item.unit_price_cents),
                unit_cents=int(item.unit_price_cents),
                description=item.description,
            )
        )
    return lines


def price_cart(
    items: Sequence[CartLineItem],
    coupon_code: str | None = None,
    *,
    resolver: CouponResolver | None = None,
    now: datetime | None = None,
) -> PricedCart:
    """Compute the charged unit amount of every line from its base price.

    A coupon discounts only lines whose SKU it allows, and only when it is
    active and the undiscounted subtotal reaches its minimum order value.
    """
    lines = _base_lines(items)
    requested = normalize_code(coupon_code) or None
    if requested is None or requested == NO_COUPON.upper():
        return PricedCart(lines=tuple(lines))

    resolver = resolver or get_coupon_resolver()
    coupon = resolver.find_coupon(requested)
    if coupon is None:
        return PricedCart(lines=tuple(lines), requested_code=requested, rejection="unknown_code")
    if not resolver.is_active(coupon, now):
        return PricedCart(lines=tuple(lines), requested_code=requested, rejection="inactive")
    subtotal = sum(line.base_total_cents for line in lines)
    if coupon.min_order_cents and subtotal < coupon.min_order_cents:
        return PricedCart(lines=tuple(lines), requested_code=requested, rejection="below_minimum")
    if not any(resolver.allows_sku(coupon, line.sku) for line in lines):
        return PricedCart(lines=tuple(lines), requested_code=requested, rejection="no_eligible_items")

    priced = [
        PricedLine(
            name=line.name,
            sku=line.sku,
            quantity=line.quantity,
            base_unit_cents=line.base_unit_cents,
            unit_cents=discounted_unit_amount(coupon, line.base_unit_cents),
            description=line.description,
        )
        if resolver.allows_sku(coupon, line.sku)
        else line
        for line in lines
    ]
    return PricedCart(lines=tuple(priced), requested_code=requested, coupon=coupon)


@dataclass(frozen=True)
class CheckoutSessionResult:
    session_id: str
    url: str
    is_mock: bool = False


@dataclass
class CheckoutSuccessResult:
    session: CheckoutSessionSummary
    voucher_used: str | None = None
    voucher: GeneratedVoucher | None = None
    metadata: dict[str, str] = dataclass_field(default_factory=dict)


def _stripe_line_item(line: PricedLine, currency: str) -> dict[str, Any]:
    product_data: dict[str, Any] = {"name": line.name, "metadata": {"sku": line.sku or ""}}
    if line.description:
        product_data["description"] = line.description
    return {
        "price_data": {"currency": currency, "product_data": product_data, "unit_amount": line.unit_cents},
        "quantity": line.quantity,
    }


def _personalization_payload(personalization: VoucherPersonalization | None) -> dict[str, Any] | None:
    if personalization is None:
        return None
    return personalization.model_dump(mode="json", exclude_none=True)


def _checkout_metadata(cart: PricedCart, personalization: VoucherPersonalization | None) -> dict[str, str]:
    metadata = {
        "source": "voucher_shop",
        "voucher_used": cart.applied_code or NO_COUPON,
        "delivery_method": personalization.delivery_method.value if personalization else "",
    }
    payload = _personalization_payload(personalization)
    if payload is not None:
        raw = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
        metadata["voucher_data"] = raw[: max(0, int(settings.voucher_metadata_limit))]
    return metadata


def build_session_params(
    cart: PricedCart,
    *,
    customer_email: str | None,
    personalization: VoucherPersonalization | None,
) -> dict[str, Any]:
    currency = (settings.currency or "eur").lower()
    frontend = settings.frontend_origin.rstrip("/")
    params: dict[str, Any] = {
        "mode": "payment",
        "line_items": [_stripe_line_item(line, currency) for line in cart.lines],
        "payment_method_types": list(settings.checkout_payment_method_types),
        "allow_promotion_codes": False,
        "billing_address_collection": "required",
        "locale": settings.checkout_locale,
        "success_url": f"{frontend}/checkout/success?session_id={{CHECKOUT_SESSION_ID}}",
        "cancel_url": f"{frontend}/cart",
        "metadata": _checkout_metadata(cart, personalization),
    }
    if customer_email:
        params["customer_email"] = customer_email
    if personalization is not None and personalization.delivery_method == DeliveryMethod.post:
        params["shipping_address_collection"] = {"allowed_countries": list(settings.shipping_countries)}
    return params


def _validate_cart(items: Sequence[CartLineItem], cart: PricedCart) -> None:
    if not items or cart.quantity <= 0:
        raise ValidationError("Cart is empty")
    if cart.subtotal_cents <= 0:
        raise ValidationError("Cart total must be greater than zero")


def _validate_personalization(personalization: VoucherPersonalization | None, customer_email: str | None) -> None:
    if personalization is None:
        return
    if not (personalization.recipient_email or customer_email):
        raise ValidationError("Recipient email is required")


async def create_checkout_session(
    session: AsyncSession,
    cart: Sequence[CartLineItem],
    *,
    coupon_code: str | None = None,
    customer_email: str | None = None,
    personalization: VoucherPersonalization | None = None,
    resolver: CouponResolver | None = None,
) -> CheckoutSessionResult:
    priced = price_cart(cart, coupon_code, resolver=resolver)
    _validate_cart(cart, priced)
    _validate_personalization(personalization, customer_email)

    use_mock = is_mock_payments() or not payments.is_stripe_configured()
    if use_mock and is_production():
        logger.error("checkout_payments_unconfigured")
        raise PaymentProviderError("Payments are not configured", provider_message="Stripe secret key missing")
    if use_mock:
        created = payments.mock_checkout_session()
        logger.warning("checkout_mock_session", extra={"checkout_session_id": created["session_id"]})
    else:
        params = build_session_params(priced, customer_email=customer_email, personalization=personalization)
        created = await payments.create_checkout_session(params)

    pending = PendingCheckout(
        checkout_session_id=created["session_id"],
        customer_email=customer_email,
        coupon_code=priced.applied_code,
        currency=(settings.currency or "eur").lower(),
        line_items=[line.as_record() for line in priced.lines],
        subtotal_cents=priced.subtotal_cents,
        discount_cents=priced.discount_cents,
        total_cents=priced.total_cents,
        personalization=_personalization_payload(personalization),
        is_mock=use_mock,
    )
    session.add(pending)
    try:
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error(
            "pending_checkout_store_failed",
            extra={"checkout_session_id": created["session_id"], "error": str(exc)},
        )
        raise PersistenceError("Could not store the checkout") from exc

    metrics.record_checkout_session(mock=use_mock)
    logger.info(
        "checkout_session_created",
        extra={
            "checkout_session_id": created["session_id"],
            "coupon": priced.applied_code,
            "coupon_rejected": priced.rejection,
            "total_cents": priced.total_cents,
            "mock": use_mock,
        },
    )
    return CheckoutSessionResult(session_id=created["session_id"], url=created["checkout_url"], is_mock=use_mock)


async def _pending_checkout(session: AsyncSession, session_id: str) -> PendingCheckout | None:
    result = await session.execute(select(PendingCheckout).where(PendingCheckout.checkout_session_id == session_id))
    return result.scalar_one_or_none()


def _plain_dict(obj: Any) -> dict[str, str]:
    if obj is None:
        return {}
    if hasattr(obj, "to_dict"):
        obj = obj.to_dict()
    return {str(key): str(value) for key, value in dict(obj).items() if value is not None}


def _mock_summary(session_id: str, pending: PendingCheckout) -> tuple[CheckoutSessionSummary, dict[str, str]]:
    metadata = {"source": "voucher_shop", "voucher_used": pending.coupon_code or NO_COUPON}
    summary = CheckoutSessionSummary(
        id=session_id,
        payment_status="paid",
        customer_email=pending.customer_email,
        amount_subtotal=pending.subtotal_cents,
        amount_total=pending.total_cents,
        currency=pending.currency,
        metadata=metadata,
    )
    return summary, metadata


def _provider_summary(session_obj: Any) -> tuple[CheckoutSessionSummary, dict[str, str]]:
    field = payments.field
    metadata = _plain_dict(field(session_obj, "metadata"))
    customer_email = field(session_obj, "customer_email") or field(field(session_obj, "customer_details"), "email")
    summary = CheckoutSessionSummary(
        id=str(field(session_obj, "id")),
        payment_status=field(session_obj, "payment_status"),
        customer_email=customer_email,
        amount_subtotal=field(session_obj, "amount_subtotal"),
        amount_total=field(session_obj, "amount_total"),
        currency=field(session_obj, "currency"),
        metadata=metadata,
    )
    return summary, metadata


def _personalization_from(pending: PendingCheckout | None, metadata: dict[str, str]) -> VoucherPersonalization | None:
    raw: Any = pending.personalization if pending is not None else None
    if raw is None and metadata.get("voucher_data"):
        try:
            raw = json.loads(metadata["voucher_data"])
        except ValueError:
            logger.warning("voucher_metadata_unreadable")
            return None
    if not raw:
        return None
    try:
        return VoucherPersonalization.model_validate(raw)
    except PydanticValidationError as exc:
        logger.warning("voucher_personalization_invalid", extra={"error": str(exc)})
        return None


def _voucher_params(
    session_id: str,
    summary: CheckoutSessionSummary,
    pending: PendingCheckout | None,
    personalization: VoucherPersonalization,
) -> GiftVoucherCreate:
    lines = list(pending.line_items or []) if pending is not None else []
    # Face value is what the server priced, never a client-supplied figure.
    amount = pending.subtotal_cents if pending is not None else summary.amount_subtotal
    voucher_type = personalization.voucher_type or next((line.get("sku") for line in lines if line.get("sku")), None)
    return GiftVoucherCreate(
        checkout_session_id=session_id,
        recipient_email=personalization.recipient_email or summary.customer_email,
        amount_cents=int(amount or 0),
        currency=(summary.currency or settings.currency or "eur").lower(),
        recipient_name=personalization.recipient_name,
        sender_name=personalization.sender_name,
        sender_email=personalization.sender_email or summary.customer_email,
        voucher_type=voucher_type,
        message=personalization.message,
        photo_url=personalization.photo_url,
        design=personalization.design,
        delivery_method=personalization.delivery_method,
        delivery_date=personalization.delivery_date,
    )


async def handle_successful_payment(session: AsyncSession, session_id: str) -> CheckoutSuccessResult:
    """Finish a paid checkout: count the coupon, mint the voucher and send it when due.

    Safe to call repeatedly for the same session id; later calls return the
    voucher minted by the first.
    """
    session_id = (session_id or "").strip()
    if not session_id:
        raise ValidationError("session_id is required")

    pending = await _pending_checkout(session, session_id)
    if is_mock_session_id(session_id):
        if pending is None or not pending.is_mock or is_production():
            raise ValidationError("Unknown checkout session")
        summary, metadata = _mock_summary(session_id, pending)
    else:
        session_obj = await payments.retrieve_checkout_session(session_id)
        summary, metadata = _provider_summary(session_obj)

    if summary.payment_status not in PAID_STATUSES:
        raise ValidationError("Payment not completed")

    used = normalize_code(metadata.get("voucher_used"))
    voucher_used = used if used and used != NO_COUPON.upper() else None

    voucher = await get_voucher_for_session(session, session_id)
    if voucher is not None:
        return CheckoutSuccessResult(session=summary, voucher_used=voucher_used, voucher=voucher, metadata=metadata)

    if voucher_used:
        await record_coupon_usage(
            session,
            code=voucher_used,
            customer_email=summary.customer_email,
            checkout_session_id=session_id,
            discount_cents=pending.discount_cents if pending is not None else 0,
        )

    if pending is not None and pending.completed_at is None:
        pending.payment_status = summary.payment_status
        pending.completed_at = datetime.now(timezone.utc)
        session.add(pending)

    personalization = _personalization_from(pending, metadata)
    if personalization is not None:
        voucher = await create_gift_voucher(session, _voucher_params(session_id, summary, pending, personalization))
        if is_delivery_due(voucher):
            await deliver_voucher(session, voucher)
    else:
        await session.commit()

    logger.info(
        "checkout_completed",
        extra={"checkout_session_id": session_id, "voucher_used": voucher_used, "voucher_issued": voucher is not None},
    )
    return CheckoutSuccessResult(session=summary, voucher_used=voucher_used, voucher=voucher, metadata=metadata)
