from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, field_validator

from photovouchers.models.voucher import DeliveryMethod
from photovouchers.schemas.voucher import GeneratedVoucherRead


class CartLineItem(BaseModel):
    sku: str | None = Field(default=None, max_length=80)
    name: str = Field(min_length=1, max_length=200, validation_alias=AliasChoices("name", "title"))
    unit_price_cents: int = Field(
        ge=0,
        le=10_000_000,
        validation_alias=AliasChoices("unit_price_cents", "unitPriceCents", "price"),
    )
    quantity: int = Field(default=1, ge=1, le=100, validation_alias=AliasChoices("quantity", "qty"))
    description: str | None = Field(default=None, max_length=500)

    @field_validator("sku")
    @classmethod
    def blank_sku_is_none(cls, value: str | None) -> str | None:
        cleaned = (value or "").strip()
        return cleaned or None


class VoucherPersonalization(BaseModel):
    recipient_name: str | None = Field(
        default=None, max_length=255, validation_alias=AliasChoices("recipient_name", "recipientName")
    )
    recipient_email: EmailStr | None = Field(
        default=None, validation_alias=AliasChoices("recipient_email", "recipientEmail")
    )
    sender_name: str | None = Field(default=None, max_length=255, validation_alias=AliasChoices("sender_name", "senderName"))
    sender_email: EmailStr | None = Field(default=None, validation_alias=AliasChoices("sender_email", "senderEmail"))
    message: str | None = Field(
        default=None,
        max_length=1000,
        validation_alias=AliasChoices("message", "personal_message", "personalMessage"),
    )
    delivery_method: DeliveryMethod = Field(
        default=DeliveryMethod.email,
        validation_alias=AliasChoices("delivery_method", "deliveryMethod", "delivery"),
    )
    delivery_date: datetime | None = Field(default=None, validation_alias=AliasChoices("delivery_date", "deliveryDate"))
    design: str | None = Field(default=None, max_length=80)
    photo_url: str | None = Field(default=None, max_length=1000, validation_alias=AliasChoices("photo_url", "photoUrl"))
    voucher_type: str | None = Field(default=None, max_length=80, validation_alias=AliasChoices("voucher_type", "voucherType"))

    @field_validator("delivery_method", mode="before")
    @classmethod
    def normalize_delivery_method(cls, value):
        # The shop frontend labels emailed vouchers "pdf".
        if isinstance(value, str) and value.strip().lower() in {"pdf", "mail", "e-mail"}:
            return DeliveryMethod.email
        return value


class CheckoutSessionCreate(BaseModel):
    items: list[CartLineItem] = Field(default_factory=list, max_length=50)
    coupon_code: str | None = Field(
        default=None,
        max_length=40,
        validation_alias=AliasChoices("coupon_code", "couponCode", "appliedVoucherCode"),
    )
    customer_email: EmailStr | None = Field(default=None, validation_alias=AliasChoices("customer_email", "customerEmail"))
    voucher_data: VoucherPersonalization | None = Field(
        default=None, validation_alias=AliasChoices("voucher_data", "voucherData", "personalization")
    )


class CheckoutSessionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId")
    url: str


class CheckoutSessionSummary(BaseModel):
    id: str
    payment_status: str | None = None
    customer_email: str | None = None
    amount_subtotal: int | None = None
    amount_total: int | None = None
    currency: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)


class CheckoutSuccessResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    session: CheckoutSessionSummary
    voucher_used: str | None = Field(default=None, alias="voucherUsed")
    voucher: GeneratedVoucherRead | None = None
