from fastapi import APIRouter, Depends, Query
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession

from photovouchers.db.session import get_session
from photovouchers.services import fulfillment

router = APIRouter(prefix="/vouchers", tags=["vouchers"])


@router.get("/download")
async def download_voucher(
    token: str = Query(min_length=1, max_length=2048),
    session: AsyncSession = Depends(get_session),
) -> FileResponse:
    voucher = await fulfillment.resolve_download(session, token)
    path = await fulfillment.document_path(session, voucher, "pdf")
    return FileResponse(path, media_type="application/pdf", filename=f"Gutschein-{voucher.security_code}.pdf")
