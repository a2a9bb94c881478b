from __future__ import annotations

import io
import logging
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from xml.sax.saxutils import escape as xml_escape

from jinja2 import Environment, FileSystemLoader, select_autoescape
from PIL import Image, ImageDraw, ImageFont
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from photovouchers.core.config import settings
from photovouchers.models.voucher import GeneratedVoucher

logger = logging.getLogger(__name__)

TEMPLATE_PATH = Path(__file__).parent.parent / "templates"
env = Environment(loader=FileSystemLoader(TEMPLATE_PATH), autoescape=select_autoescape(["html", "xml", "html.j2"]))

_ACCENT = colors.HexColor("#a8835a")


def format_money(amount_cents: int, currency: str = "eur") -> str:
    value = (Decimal(int(amount_cents)) / Decimal(100)).quantize(Decimal("0.01"))
    whole, _, fraction = f"{value:,.2f}".partition(".")
    whole = whole.replace(",", ".")
    symbol = "€" if (currency or "").lower() == "eur" else (currency or "").upper()
    return f"{whole},{fraction} {symbol}"


def _issued_on(voucher: GeneratedVoucher) -> str:
    created_at = getattr(voucher, "created_at", None) or datetime.now(timezone.utc)
    return created_at.strftime("%d.%m.%Y")


def render_voucher_html(voucher: GeneratedVoucher) -> str:
    template = env.get_template("vouchers/voucher.html.j2")
    return template.render(
        voucher=voucher,
        studio_name=settings.studio_name,
        amount=format_money(voucher.amount_cents, voucher.currency),
        issued_on=_issued_on(voucher),
    )


def _pdf_styles() -> tuple[ParagraphStyle, ParagraphStyle, ParagraphStyle, ParagraphStyle]:
    base = getSampleStyleSheet()
    studio = ParagraphStyle("studio", parent=base["Normal"], fontSize=11, textColor=_ACCENT, leading=14)
    title = ParagraphStyle("title", parent=base["Title"], fontSize=34, leading=40, alignment=0)
    amount = ParagraphStyle("amount", parent=base["Heading1"], fontSize=26, leading=32)
    body = ParagraphStyle("body", parent=base["Normal"], fontSize=12, leading=16)
    return studio, title, amount, body


def render_voucher_pdf(voucher: GeneratedVoucher) -> bytes:
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        leftMargin=20 * mm,
        rightMargin=20 * mm,
        topMargin=20 * mm,
        bottomMargin=20 * mm,
        title=f"Gutschein {voucher.security_code}",
    )
    studio, title, amount, body = _pdf_styles()
    story: list[object] = [
        Paragraph(xml_escape(settings.studio_name.upper()), studio),
        Paragraph("Gutschein", title),
    ]
    if voucher.voucher_type:
        story.append(Paragraph(xml_escape(voucher.voucher_type), body))
    story.append(Spacer(1, 6 * mm))
    story.append(Paragraph(xml_escape(format_money(voucher.amount_cents, voucher.currency)), amount))
    if voucher.recipient_name:
        story.append(Paragraph(f"Für: {xml_escape(voucher.recipient_name)}", body))
    if voucher.sender_name:
        story.append(Paragraph(f"Von: {xml_escape(voucher.sender_name)}", body))
    if voucher.message:
        story.append(Spacer(1, 6 * mm))
        message = xml_escape(voucher.message).replace("\n", "<br/>")
        story.append(Paragraph(f"<i>{message}</i>", body))

    story.append(Spacer(1, 12 * mm))
    details = Table(
        [
            ["Sicherheitscode", voucher.security_code],
            ["Ausgestellt am", _issued_on(voucher)],
        ],
        colWidths=[45 * mm, 100 * mm],
    )
    details.setStyle(
        TableStyle(
            [
                ("FONTNAME", (0, 0), (-1, -1), "Helvetica"),
                ("FONTNAME", (1, 0), (1, 0), "Courier-Bold"),
                ("FONTSIZE", (0, 0), (-1, -1), 11),
                ("LINEABOVE", (0, 0), (-1, 0), 0.8, _ACCENT),
                ("TOPPADDING", (0, 0), (-1, -1), 6),
            ]
        )
    )
    story.append(details)
    doc.build(story)
    return buffer.getvalue()


def _bitmap_safe(text: str) -> str:
    # The default PIL font only covers latin-1.
    return text.replace("€", "EUR").encode("latin-1", "replace").decode("latin-1")


def render_voucher_preview_png(voucher: GeneratedVoucher) -> bytes:
    image = Image.new("RGB", (1200, 600), color=(246, 241, 234))
    draw = ImageDraw.Draw(image)
    font = ImageFont.load_default()
    draw.rectangle([(20, 20), (1180, 580)], outline=(168, 131, 90), width=4)

    lines = [
        settings.studio_name.upper(),
        "GUTSCHEIN",
        format_money(voucher.amount_cents, voucher.currency),
    ]
    if voucher.recipient_name:
        lines.append(f"Für: {voucher.recipient_name}")
    if voucher.sender_name:
        lines.append(f"Von: {voucher.sender_name}")
    if voucher.message:
        lines.append(voucher.message[:120])
    lines.append(f"Code: {voucher.security_code}")

    y = 60
    for line in lines:
        draw.text((60, y), _bitmap_safe(line), fill=(34, 34, 34), font=font)
        y += 48

    out = io.BytesIO()
    image.save(out, format="PNG")
    return out.getvalue()


def storage_root(root: str | Path | None = None) -> Path:
    path = Path(root or settings.voucher_storage_root).resolve()
    path.mkdir(parents=True, exist_ok=True)
    return path


def resolve_document_path(rel_path: str, root: str | Path | None = None) -> Path:
    base = storage_root(root)
    target = (base / rel_path).resolve()
    target.relative_to(base)
    return target


def write_voucher_documents(voucher: GeneratedVoucher, *, root: str | Path | None = None) -> None:
    """Render PDF and PNG preview to private storage and record their paths on the voucher."""
    base = storage_root(root)
    pdf_name = f"{voucher.id}.pdf"
    preview_name = f"{voucher.id}.png"
    (base / pdf_name).write_bytes(render_voucher_pdf(voucher))
    (base / preview_name).write_bytes(render_voucher_preview_png(voucher))
    voucher.pdf_path = pdf_name
    voucher.preview_path = preview_name
    voucher.pdf_generated_at = datetime.now(timezone.utc)
    logger.info("voucher_documents_rendered", extra={"voucher_id": str(voucher.id)})
