from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from photovouchers.core import metrics
from photovouchers.models.coupon import CouponRedemption, CouponUsage
from photovouchers.services.coupons import normalize_code

logger = logging.getLogger(__name__)


async def _increment_usage(session: AsyncSession, code: str, now: datetime) -> None:
    result = await session.execute(
        update(CouponUsage)
        .where(CouponUsage.code == code)
        .values(times_used=CouponUsage.times_used + 1, last_used_at=now)
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        session.add(CouponUsage(code=code, times_used=1, last_used_at=now))


async def record_coupon_usage(
    session: AsyncSession,
    *,
    code: str | None,
    customer_email: str | None,
    checkout_session_id: str,
    discount_cents: int = 0,
) -> bool:
    """Count one redemption of `code` for a completed checkout session.

    Bookkeeping only: there is no redemption cap, a repeat call for the same
    session is a no-op, and database failures are logged and swallowed so a
    paid customer never sees them.
    """
    cleaned = normalize_code(code)
    if not cleaned or cleaned == "NONE":
        return False

    try:
        already = (
            await session.execute(
                select(CouponRedemption.id).where(CouponRedemption.checkout_session_id == checkout_session_id)
            )
        ).scalar_one_or_none()
        if already is not None:
            return False

        now = datetime.now(timezone.utc)
        session.add(
            CouponRedemption(
                code=cleaned,
                customer_email=(customer_email or "").strip().lower() or None,
                checkout_session_id=checkout_session_id,
                discount_cents=max(0, int(discount_cents or 0)),
            )
        )
        await _increment_usage(session, cleaned, now)
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.warning(
            "coupon_usage_failed",
            extra={"code": cleaned, "checkout_session_id": checkout_session_id, "error": str(exc)},
        )
        return False

    metrics.record_coupon_redemption()
    logger.info("coupon_usage_recorded", extra={"code": cleaned, "checkout_session_id": checkout_session_id})
    return True


async def coupon_times_used(session: AsyncSession, code: str) -> int:
    result = await session.execute(select(CouponUsage.times_used).where(CouponUsage.code == normalize_code(code)))
    return int(result.scalar_one_or_none() or 0)
