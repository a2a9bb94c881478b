import logging

from fastapi import APIRouter, Depends

from photovouchers.core.dependencies import require_admin_token
from photovouchers.schemas.coupon import (
    CouponListResponse,
    CouponRead,
    CouponRefreshResponse,
    CouponValidateRequest,
    CouponValidateResponse,
)
from photovouchers.services.checkout import price_cart
from photovouchers.services.coupons import coupon_summary, get_coupon_resolver, normalize_code

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/coupons", tags=["coupons"])
admin_router = APIRouter(prefix="/admin/coupons", tags=["admin"], dependencies=[Depends(require_admin_token)])


@router.post("/validate", response_model=CouponValidateResponse)
async def validate_coupon(payload: CouponValidateRequest) -> CouponValidateResponse:
    priced = price_cart(payload.items, payload.code, resolver=get_coupon_resolver())
    reason = priced.rejection
    if reason is None and priced.coupon is None:
        reason = "unknown_code"
    return CouponValidateResponse(
        valid=priced.coupon is not None,
        code=normalize_code(payload.code),
        reason=reason,
        subtotal_cents=priced.subtotal_cents,
        discount_cents=priced.discount_cents,
        total_cents=priced.total_cents,
    )


@admin_router.get("", response_model=CouponListResponse)
async def list_coupons() -> CouponListResponse:
    resolver = get_coupon_resolver()
    return CouponListResponse(coupons=[CouponRead(**coupon_summary(resolver, c)) for c in resolver.coupons()])


@admin_router.post("/refresh", response_model=CouponRefreshResponse)
async def refresh_coupons() -> CouponRefreshResponse:
    count = get_coupon_resolver().force_refresh()
    logger.info("coupons_refreshed", extra={"count": count})
    return CouponRefreshResponse(count=count)
