from datetime import datetime

from pydantic import BaseModel, Field

from photovouchers.schemas.checkout import CartLineItem


class CouponRead(BaseModel):
    code: str
    type: str
    value: float
    allowed_skus: list[str]
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    min_order_cents: int | None = None
    active: bool


class CouponListResponse(BaseModel):
    coupons: list[CouponRead]


class CouponRefreshResponse(BaseModel):
    count: int


class CouponValidateRequest(BaseModel):
    code: str = Field(min_length=1, max_length=40)
    items: list[CartLineItem] = Field(default_factory=list, max_length=50)


class CouponValidateResponse(BaseModel):
    valid: bool
    code: str
    reason: str | None = None
    subtotal_cents: int = 0
    discount_cents: int = 0
    total_cents: int = 0
