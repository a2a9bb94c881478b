from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from photovouchers.core.config import settings
from photovouchers.core.errors import NotFoundError, ValidationError
from photovouchers.core.security import create_voucher_download_token, voucher_session_from_token
from photovouchers.models.voucher import DeliveryMethod, GeneratedVoucher, VoucherStatus
from photovouchers.services import voucher_documents
from photovouchers.services.vouchers import get_voucher_for_session

logger = logging.getLogger(__name__)


async def get_voucher_by_session(session: AsyncSession, session_id: str) -> GeneratedVoucher:
    voucher = await get_voucher_for_session(session, (session_id or "").strip())
    if voucher is None:
        raise NotFoundError("Voucher not found")
    return voucher


async def list_print_queue(session: AsyncSession, *, limit: int = 200) -> list[GeneratedVoucher]:
    result = await session.execute(
        select(GeneratedVoucher)
        .where(
            GeneratedVoucher.delivery_method == DeliveryMethod.post,
            GeneratedVoucher.status != VoucherStatus.fulfilled,
        )
        .order_by(GeneratedVoucher.created_at.asc(), GeneratedVoucher.security_sequence.asc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def regenerate_pdf(session: AsyncSession, session_id: str) -> GeneratedVoucher:
    voucher = await get_voucher_by_session(session, session_id)
    voucher_documents.write_voucher_documents(voucher)
    session.add(voucher)
    await session.commit()
    logger.info("voucher_pdf_regenerated", extra={"checkout_session_id": voucher.checkout_session_id})
    return voucher


async def mark_fulfilled(session: AsyncSession, session_id: str) -> GeneratedVoucher:
    voucher = await get_voucher_by_session(session, session_id)
    if voucher.status == VoucherStatus.fulfilled:
        return voucher
    voucher.status = VoucherStatus.fulfilled
    voucher.fulfilled_at = datetime.now(timezone.utc)
    session.add(voucher)
    await session.commit()
    logger.info("voucher_fulfilled", extra={"checkout_session_id": voucher.checkout_session_id})
    return voucher


def download_url(token: str) -> str:
    base = settings.public_base_url.rstrip("/")
    return f"{base}/api/v1/vouchers/download?token={token}"


async def secure_link(
    session: AsyncSession,
    session_id: str,
    ttl_seconds: int,
    *,
    now: datetime | None = None,
) -> tuple[str, datetime]:
    low = int(settings.voucher_link_min_ttl_seconds)
    high = int(settings.voucher_link_max_ttl_seconds)
    if not low <= int(ttl_seconds) <= high:
        raise ValidationError(f"ttl must be between {low} and {high} seconds")
    voucher = await get_voucher_by_session(session, session_id)
    token, expires_at = create_voucher_download_token(voucher.checkout_session_id, ttl_seconds, now=now)
    return download_url(token), expires_at


async def resolve_download(session: AsyncSession, token: str) -> GeneratedVoucher:
    session_id = voucher_session_from_token(token)
    if session_id is None:
        raise NotFoundError("Download link is invalid or expired")
    return await get_voucher_by_session(session, session_id)


async def document_path(session: AsyncSession, voucher: GeneratedVoucher, kind: str) -> Path:
    """Path of the stored PDF or preview, re-rendering both when the file is gone."""
    rel_path = voucher.pdf_path if kind == "pdf" else voucher.preview_path
    if rel_path:
        try:
            path = voucher_documents.resolve_document_path(rel_path)
        except ValueError:
            path = None
        if path is not None and path.is_file():
            return path
    voucher_documents.write_voucher_documents(voucher)
    session.add(voucher)
    await session.commit()
    rel_path = voucher.pdf_path if kind == "pdf" else voucher.preview_path
    return voucher_documents.resolve_document_path(rel_path or "")
