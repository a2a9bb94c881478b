from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from photovouchers.db.session import get_session
from photovouchers.schemas.checkout import (
    CheckoutSessionCreate,
    CheckoutSessionResponse,
    CheckoutSuccessResponse,
)
from photovouchers.services import checkout as checkout_service
from photovouchers.services.vouchers import voucher_read

router = APIRouter(prefix="/checkout", tags=["checkout"])


@router.post(
    "/create-session",
    response_model=CheckoutSessionResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_200_OK,
)
async def create_session(
    payload: CheckoutSessionCreate,
    session: AsyncSession = Depends(get_session),
) -> CheckoutSessionResponse:
    result = await checkout_service.create_checkout_session(
        session,
        payload.items,
        coupon_code=payload.coupon_code,
        customer_email=payload.customer_email,
        personalization=payload.voucher_data,
    )
    return CheckoutSessionResponse(session_id=result.session_id, url=result.url)


@router.get("/success", response_model=CheckoutSuccessResponse, response_model_by_alias=True)
async def checkout_success(
    session_id: str = Query(min_length=1, max_length=255),
    session: AsyncSession = Depends(get_session),
) -> CheckoutSuccessResponse:
    result = await checkout_service.handle_successful_payment(session, session_id)
    return CheckoutSuccessResponse(
        success=True,
        session=result.session,
        voucher_used=result.voucher_used,
        voucher=voucher_read(result.voucher) if result.voucher is not None else None,
    )
