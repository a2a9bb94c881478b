from __future__ import annotations

import asyncio
import logging
import uuid
import weakref
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from photovouchers.core import metrics
from photovouchers.core.config import settings
from photovouchers.core.errors import PersistenceError, ValidationError
from photovouchers.core.security import security_code_check
from photovouchers.models.voucher import DeliveryMethod, GeneratedVoucher, VoucherCodeSequence, VoucherStatus
from photovouchers.schemas.voucher import GeneratedVoucherRead
from photovouchers.services import email as email_service
from photovouchers.services import voucher_documents

logger = logging.getLogger(__name__)

SECURITY_CODE_SEQUENCE = "security_code"
# A claim older than this is treated as abandoned by a crashed worker.
DELIVERY_CLAIM_SECONDS = 15 * 60

_issuance_locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Lock]" = weakref.WeakKeyDictionary()


def _issuance_lock() -> asyncio.Lock:
    loop = asyncio.get_running_loop()
    lock = _issuance_locks.get(loop)
    if lock is None:
        lock = asyncio.Lock()
        _issuance_locks[loop] = lock
    return lock


def _as_aware(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class GiftVoucherCreate:
    checkout_session_id: str
    recipient_email: str | None
    amount_cents: int
    currency: str = "eur"
    recipient_name: str | None = None
    sender_name: str | None = None
    sender_email: str | None = None
    voucher_type: str | None = None
    message: str | None = None
    photo_url: str | None = None
    design: str | None = None
    delivery_method: DeliveryMethod = DeliveryMethod.email
    delivery_date: datetime | None = None


def format_security_code(sequence: int) -> str:
    prefix = (settings.voucher_code_prefix or "").strip().upper() or "V"
    return f"{prefix}-{int(sequence):06d}-{security_code_check(sequence)}"


async def allocate_security_code(session: AsyncSession) -> tuple[int, str]:
    """Advance the code sequence inside the caller's transaction."""
    stmt = (
        update(VoucherCodeSequence)
        .where(VoucherCodeSequence.name == SECURITY_CODE_SEQUENCE)
        .values(last_value=VoucherCodeSequence.last_value + 1)
        .returning(VoucherCodeSequence.last_value)
        .execution_options(synchronize_session=False)
    )
    sequence = (await session.execute(stmt)).scalar_one_or_none()
    if sequence is None:
        session.add(VoucherCodeSequence(name=SECURITY_CODE_SEQUENCE, last_value=1))
        await session.flush()
        sequence = 1
    return int(sequence), format_security_code(int(sequence))


async def get_voucher_for_session(session: AsyncSession, checkout_session_id: str) -> GeneratedVoucher | None:
    result = await session.execute(
        select(GeneratedVoucher).where(GeneratedVoucher.checkout_session_id == checkout_session_id)
    )
    return result.scalar_one_or_none()


def _validate(params: GiftVoucherCreate) -> None:
    if not (params.checkout_session_id or "").strip():
        raise ValidationError("Checkout session id is required")
    amount = params.amount_cents
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError("Voucher amount must be a positive number of cents")
    if not (params.recipient_email or "").strip():
        raise ValidationError("Recipient email is required")


def _render_documents(voucher: GeneratedVoucher) -> None:
    try:
        voucher_documents.write_voucher_documents(voucher)
    except OSError as exc:
        # Documents are re-rendered on demand by the admin endpoints.
        logger.warning("voucher_documents_failed", extra={"voucher_id": str(voucher.id), "error": str(exc)})


async def create_gift_voucher(session: AsyncSession, params: GiftVoucherCreate) -> GeneratedVoucher:
    """Mint the voucher for a paid checkout session.

    The security code and the voucher row commit together: a failure at any
    point rolls both back and raises PersistenceError, so no voucher exists
    without its code. A second call for the same session returns the first
    voucher.
    """
    _validate(params)
    session_id = params.checkout_session_id.strip()

    existing = await get_voucher_for_session(session, session_id)
    if existing is not None:
        return existing

    async with _issuance_lock():
        existing = await get_voucher_for_session(session, session_id)
        if existing is not None:
            return existing
        try:
            sequence, code = await allocate_security_code(session)
            voucher = GeneratedVoucher(
                id=uuid.uuid4(),
                checkout_session_id=session_id,
                security_sequence=sequence,
                security_code=code,
                recipient_email=params.recipient_email.strip(),
                recipient_name=params.recipient_name,
                sender_name=params.sender_name,
                sender_email=params.sender_email,
                amount_cents=params.amount_cents,
                currency=(params.currency or settings.currency).lower(),
                voucher_type=params.voucher_type,
                message=params.message,
                photo_url=params.photo_url,
                design=params.design,
                delivery_method=params.delivery_method,
                delivery_date=_as_aware(params.delivery_date),
                status=VoucherStatus.issued,
                created_at=datetime.now(timezone.utc),
            )
            _render_documents(voucher)
            session.add(voucher)
            await session.commit()
        except IntegrityError as exc:
            await session.rollback()
            winner = await get_voucher_for_session(session, session_id)
            if winner is not None:
                return winner
            logger.error("voucher_issue_conflict", extra={"checkout_session_id": session_id, "error": str(exc)})
            raise PersistenceError("Could not assign a unique security code") from exc
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.error("voucher_issue_failed", extra={"checkout_session_id": session_id, "error": str(exc)})
            raise PersistenceError("Could not store the voucher") from exc

    metrics.record_voucher_issued()
    logger.info(
        "voucher_issued",
        extra={
            "voucher_id": str(voucher.id),
            "checkout_session_id": session_id,
            "security_code": voucher.security_code,
            "delivery_method": voucher.delivery_method.value,
        },
    )
    return voucher


def _admin_document_url(voucher: GeneratedVoucher, kind: str) -> str:
    base = settings.public_base_url.rstrip("/")
    return f"{base}/api/v1/admin/vouchers/{voucher.checkout_session_id}/{kind}"


def voucher_read(voucher: GeneratedVoucher) -> GeneratedVoucherRead:
    data = GeneratedVoucherRead.model_validate(voucher)
    return data.model_copy(
        update={
            "preview_url": _admin_document_url(voucher, "preview"),
            "pdf_url": _admin_document_url(voucher, "pdf"),
        }
    )


def is_delivery_due(voucher: GeneratedVoucher, now: datetime | None = None) -> bool:
    if voucher.delivery_method != DeliveryMethod.email or voucher.emailed_at is not None:
        return False
    due_at = _as_aware(voucher.delivery_date)
    moment = _as_aware(now) or datetime.now(timezone.utc)
    return due_at is None or due_at <= moment


def load_pdf_bytes(voucher: GeneratedVoucher) -> bytes:
    if voucher.pdf_path:
        try:
            return voucher_documents.resolve_document_path(voucher.pdf_path).read_bytes()
        except (OSError, ValueError):
            logger.info("voucher_pdf_missing", extra={"voucher_id": str(voucher.id)})
    return voucher_documents.render_voucher_pdf(voucher)


async def _claim_delivery(session: AsyncSession, voucher: GeneratedVoucher, moment: datetime) -> bool:
    """Mark the voucher as being emailed unless another worker holds a live claim or already sent it."""
    stale_before = moment - timedelta(seconds=DELIVERY_CLAIM_SECONDS)
    result = await session.execute(
        update(GeneratedVoucher)
        .where(
            GeneratedVoucher.id == voucher.id,
            GeneratedVoucher.emailed_at.is_(None),
            or_(
                GeneratedVoucher.delivery_claimed_at.is_(None),
                GeneratedVoucher.delivery_claimed_at < stale_before,
            ),
        )
        .values(delivery_claimed_at=moment)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return result.rowcount == 1


async def _release_delivery(session: AsyncSession, voucher: GeneratedVoucher) -> None:
    await session.execute(
        update(GeneratedVoucher)
        .where(GeneratedVoucher.id == voucher.id, GeneratedVoucher.emailed_at.is_(None))
        .values(delivery_claimed_at=None)
        .execution_options(synchronize_session=False)
    )
    await session.commit()


async def deliver_voucher(session: AsyncSession, voucher: GeneratedVoucher) -> bool:
    """Email the voucher PDF to the recipient.

    Each voucher is claimed in the database before sending, so concurrent
    callers (several workers, a duplicate success request) email it once.
    A failed send releases the claim and leaves the voucher due.
    """
    if not await _claim_delivery(session, voucher, datetime.now(timezone.utc)):
        logger.info("voucher_email_skipped", extra={"voucher_id": str(voucher.id)})
        return False

    context = {
        "recipient_name": voucher.recipient_name,
        "sender_name": voucher.sender_name,
        "amount": voucher_documents.format_money(voucher.amount_cents, voucher.currency),
        "message": voucher.message,
        "security_code": voucher.security_code,
    }
    try:
        text_body, html_body = email_service.render_template("voucher_delivery.txt.j2", context)
        attachment = email_service.EmailAttachment(
            filename=f"Gutschein-{voucher.security_code}.pdf",
            content=load_pdf_bytes(voucher),
        )
        sent = await email_service.send_email(
            voucher.recipient_email,
            f"Dein Gutschein von {settings.studio_name}",
            text_body,
            html_body,
            attachments=[attachment],
        )
    except Exception:
        await _release_delivery(session, voucher)
        raise
    if not sent:
        logger.warning("voucher_email_failed", extra={"voucher_id": str(voucher.id)})
        await _release_delivery(session, voucher)
        return False

    voucher.emailed_at = datetime.now(timezone.utc)
    session.add(voucher)
    await session.commit()
    metrics.record_voucher_email_sent()
    logger.info("voucher_email_sent", extra={"voucher_id": str(voucher.id)})
    return True


async def deliver_due_vouchers(session: AsyncSession, now: datetime | None = None, *, limit: int = 100) -> int:
    result = await session.execute(
        select(GeneratedVoucher)
        .where(
            GeneratedVoucher.delivery_method == DeliveryMethod.email,
            GeneratedVoucher.emailed_at.is_(None),
        )
        .order_by(GeneratedVoucher.security_sequence.asc())
        .limit(limit)
    )
    sent = 0
    for voucher in result.scalars().all():
        if not is_delivery_due(voucher, now):
            continue
        if await deliver_voucher(session, voucher):
            sent += 1
    return sent
