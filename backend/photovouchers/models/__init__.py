from photovouchers.db.base import Base  # noqa: F401
from photovouchers.models.checkout import PendingCheckout  # noqa: F401
from photovouchers.models.coupon import CouponRedemption, CouponUsage  # noqa: F401
from photovouchers.models.voucher import (  # noqa: F401
    DeliveryMethod,
    GeneratedVoucher,
    VoucherCodeSequence,
    VoucherStatus,
)

__all__ = [
    "Base",
    "PendingCheckout",
    "CouponUsage",
    "CouponRedemption",
    "GeneratedVoucher",
    "VoucherCodeSequence",
    "VoucherStatus",
    "DeliveryMethod",
]
