from fastapi import APIRouter

from photovouchers.api.v1 import admin_vouchers, checkout, coupons, health, vouchers

api_router = APIRouter()

api_router.include_router(health.router)
api_router.include_router(checkout.router)
api_router.include_router(coupons.router)
api_router.include_router(coupons.admin_router)
api_router.include_router(admin_vouchers.router)
api_router.include_router(vouchers.router)
