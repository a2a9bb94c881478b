import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from photovouchers.db.base import Base


class VoucherStatus(str, enum.Enum):
    issued = "issued"
    fulfilled = "fulfilled"


class DeliveryMethod(str, enum.Enum):
    email = "email"
    post = "post"


class GeneratedVoucher(Base):
    __tablename__ = "generated_vouchers"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    checkout_session_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    security_sequence: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    security_code: Mapped[str] = mapped_column(String(40), nullable=False, unique=True, index=True)
    recipient_email: Mapped[str] = mapped_column(String(255), nullable=False)
    recipient_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    sender_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    sender_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="eur")
    voucher_type: Mapped[str | None] = mapped_column(String(80), nullable=True)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    photo_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    design: Mapped[str | None] = mapped_column(String(80), nullable=True)
    delivery_method: Mapped[DeliveryMethod] = mapped_column(
        Enum(DeliveryMethod), nullable=False, default=DeliveryMethod.email
    )
    delivery_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[VoucherStatus] = mapped_column(
        Enum(VoucherStatus), nullable=False, default=VoucherStatus.issued, index=True
    )
    emailed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    delivery_claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    fulfilled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    pdf_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    preview_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    pdf_generated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class VoucherCodeSequence(Base):
    """Named counter advanced with an atomic UPDATE ... RETURNING; values are never handed out twice."""

    __tablename__ = "voucher_code_sequences"

    name: Mapped[str] = mapped_column(String(40), primary_key=True)
    last_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
