from fastapi import APIRouter, Depends, Query
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession

from photovouchers.core.config import settings
from photovouchers.core.dependencies import require_admin_token
from photovouchers.db.session import get_session
from photovouchers.schemas.voucher import GeneratedVoucherRead, PrintQueueResponse, SecureLinkResponse
from photovouchers.services import fulfillment
from photovouchers.services.vouchers import voucher_read

router = APIRouter(prefix="/admin/vouchers", tags=["admin"], dependencies=[Depends(require_admin_token)])


@router.get("/print-queue", response_model=PrintQueueResponse)
async def print_queue(session: AsyncSession = Depends(get_session)) -> PrintQueueResponse:
    vouchers = await fulfillment.list_print_queue(session)
    return PrintQueueResponse(vouchers=[voucher_read(v) for v in vouchers])


@router.get("/secure-link", response_model=SecureLinkResponse)
async def secure_link(
    session_id: str = Query(min_length=1, max_length=255),
    ttl: int = Query(default=settings.voucher_link_default_ttl_seconds),
    session: AsyncSession = Depends(get_session),
) -> SecureLinkResponse:
    url, expires_at = await fulfillment.secure_link(session, session_id, ttl)
    return SecureLinkResponse(url=url, expires_at=expires_at)


@router.post("/{session_id}/regenerate-pdf", response_model=GeneratedVoucherRead)
async def regenerate_pdf(session_id: str, session: AsyncSession = Depends(get_session)) -> GeneratedVoucherRead:
    voucher = await fulfillment.regenerate_pdf(session, session_id)
    return voucher_read(voucher)


@router.post("/{session_id}/mark-fulfilled", response_model=GeneratedVoucherRead)
async def mark_fulfilled(session_id: str, session: AsyncSession = Depends(get_session)) -> GeneratedVoucherRead:
    voucher = await fulfillment.mark_fulfilled(session, session_id)
    return voucher_read(voucher)


@router.get("/{session_id}/pdf")
async def voucher_pdf(session_id: str, session: AsyncSession = Depends(get_session)) -> FileResponse:
    voucher = await fulfillment.get_voucher_by_session(session, session_id)
    path = await fulfillment.document_path(session, voucher, "pdf")
    return FileResponse(path, media_type="application/pdf", filename=f"Gutschein-{voucher.security_code}.pdf")


@router.get("/{session_id}/preview")
async def voucher_preview(session_id: str, session: AsyncSession = Depends(get_session)) -> FileResponse:
    voucher = await fulfillment.get_voucher_by_session(session, session_id)
    path = await fulfillment.document_path(session, voucher, "preview")
    return FileResponse(path, media_type="image/png")
