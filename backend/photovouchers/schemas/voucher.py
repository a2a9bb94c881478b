from datetime import datetime, timezone
from uuid import UUID

from pydantic import BaseModel, ConfigDict, field_validator

from photovouchers.models.voucher import DeliveryMethod, VoucherStatus


class GeneratedVoucherRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    checkout_session_id: str
    security_code: str
    recipient_email: str
    recipient_name: str | None = None
    sender_name: str | None = None
    sender_email: str | None = None
    amount_cents: int
    currency: str
    voucher_type: str | None = None
    message: str | None = None
    design: str | None = None
    photo_url: str | None = None
    delivery_method: DeliveryMethod
    delivery_date: datetime | None = None
    status: VoucherStatus
    emailed_at: datetime | None = None
    fulfilled_at: datetime | None = None
    created_at: datetime
    preview_url: str | None = None
    pdf_url: str | None = None

    @field_validator("delivery_date", "emailed_at", "fulfilled_at", "created_at")
    @classmethod
    def assume_utc(cls, value: datetime | None) -> datetime | None:
        # SQLite hands timestamps back without tzinfo.
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class PrintQueueResponse(BaseModel):
    vouchers: list[GeneratedVoucherRead]


class SecureLinkResponse(BaseModel):
    url: str
    expires_at: datetime
