from fastapi import APIRouter

from photovouchers.core.config import settings
from photovouchers.core.metrics import snapshot as metrics_snapshot

router = APIRouter(tags=["health"])


@router.get("/health")
def healthcheck() -> dict:
    return {"status": "ok", "version": settings.app_version, "metrics": metrics_snapshot()}
