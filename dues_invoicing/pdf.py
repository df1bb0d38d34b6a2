"""Printable invoice PDFs built with reportlab's platypus layer."""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from xml.sax.saxutils import escape

from reportlab.graphics.barcode.qr import QrCodeWidget
from reportlab.graphics.shapes import Drawing
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_RIGHT
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import HRFlowable, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from .entities import LineItem
from .errors import RenderError

_LOG = logging.getLogger(__name__)

PRIMARY = colors.HexColor("#1f4e79")
MUTED = colors.HexColor("#5e6d80")
BORDER = colors.HexColor("#d0d7de")
LIGHT_BG = colors.HexColor("#f6f8fa")

QR_SIZE = 1.2 * inch


@dataclass(frozen=True)
class InvoiceDocument:
    invoice_number: str
    issue_date: date
    due_date: date
    organization_name: str
    bill_to_name: str
    line_items: tuple[LineItem, ...]
    total: Decimal
    currency: str = "USD"
    bill_to_lines: tuple[str, ...] = ()
    membership_label: str = ""
    payment_link: str | None = None
    notes: tuple[str, ...] = field(default_factory=tuple)


def _money(amount: Decimal, currency: str) -> str:
    prefix = "$" if currency == "USD" else f"{currency} "
    return f"{prefix}{amount:,.2f}"


def _text(value: str) -> str:
    return escape(value or "")


def _styles() -> dict[str, ParagraphStyle]:
    base = getSampleStyleSheet()
    return {
        "brand": ParagraphStyle("Brand", parent=base["Normal"], fontSize=16, fontName="Helvetica-Bold", textColor=PRIMARY),
        "title": ParagraphStyle(
            "Title", parent=base["Normal"], fontSize=20, fontName="Helvetica-Bold", alignment=TA_RIGHT
        ),
        "label": ParagraphStyle("Label", parent=base["Normal"], fontSize=7.5, fontName="Helvetica-Bold", textColor=MUTED),
        "value": ParagraphStyle("Value", parent=base["Normal"], fontSize=9.5, spaceAfter=6),
        "body": ParagraphStyle("Body", parent=base["Normal"], fontSize=9, leading=12),
        "small": ParagraphStyle("Small", parent=base["Normal"], fontSize=8, leading=10, textColor=MUTED),
        "footer": ParagraphStyle("Footer", parent=base["Normal"], fontSize=7.5, textColor=MUTED, alignment=TA_CENTER),
    }


def _qr_drawing(link: str) -> Drawing:
    widget = QrCodeWidget(link)
    left, bottom, right, top = widget.getBounds()
    width, height = right - left, top - bottom
    drawing = Drawing(QR_SIZE, QR_SIZE, transform=[QR_SIZE / width, 0, 0, QR_SIZE / height, 0, 0])
    drawing.add(widget)
    return drawing


def _header(doc: InvoiceDocument, s: dict[str, ParagraphStyle]) -> list:
    table = Table(
        [[Paragraph(_text(doc.organization_name), s["brand"]), Paragraph("INVOICE", s["title"])]],
        colWidths=[3.6 * inch, 3.3 * inch],
    )
    table.setStyle(TableStyle([("VALIGN", (0, 0), (-1, -1), "TOP"), ("LEFTPADDING", (0, 0), (-1, -1), 0)]))
    return [table, Spacer(1, 6), HRFlowable(width="100%", thickness=2, color=PRIMARY)]


def _meta(doc: InvoiceDocument, s: dict[str, ParagraphStyle]) -> list:
    bill_to = "<br/>".join(_text(line) for line in (doc.bill_to_name, *doc.bill_to_lines) if line)
    left = [Paragraph("BILL TO", s["label"]), Paragraph(bill_to, s["value"])]
    if doc.membership_label:
        left += [Paragraph("MEMBERSHIP", s["label"]), Paragraph(_text(doc.membership_label), s["value"])]

    right = [
        Paragraph("INVOICE NUMBER", s["label"]),
        Paragraph(_text(doc.invoice_number), s["value"]),
        Paragraph("ISSUE DATE", s["label"]),
        Paragraph(doc.issue_date.strftime("%B %d, %Y"), s["value"]),
        Paragraph("DUE DATE", s["label"]),
        Paragraph(doc.due_date.strftime("%B %d, %Y"), s["value"]),
    ]
    table = Table([[left, right]], colWidths=[3.9 * inch, 3.0 * inch])
    table.setStyle(TableStyle([("VALIGN", (0, 0), (-1, -1), "TOP"), ("LEFTPADDING", (0, 0), (-1, -1), 0)]))
    return [table]


def _line_items(doc: InvoiceDocument, s: dict[str, ParagraphStyle]) -> list:
    rows: list[list] = [["Description", "Qty", "Unit Price", "Amount"]]
    for item in doc.line_items:
        description = f"<b>{_text(item.name)}</b>"
        if item.description:
            description += f'<br/><font size="8" color="#5e6d80">{_text(item.description)}</font>'
        rows.append(
            [
                Paragraph(description, s["body"]),
                str(item.quantity),
                _money(item.unit_price, doc.currency),
                _money(item.amount, doc.currency),
            ]
        )
    rows.append(["", "", "Total", _money(doc.total, doc.currency)])

    table = Table(rows, colWidths=[3.9 * inch, 0.6 * inch, 1.2 * inch, 1.2 * inch], repeatRows=1)
    table.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), LIGHT_BG),
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("FONTSIZE", (0, 0), (-1, -1), 9),
                ("ALIGN", (1, 0), (-1, -1), "RIGHT"),
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
                ("LINEBELOW", (0, 0), (-1, -2), 0.5, BORDER),
                ("FONTNAME", (2, -1), (-1, -1), "Helvetica-Bold"),
                ("TEXTCOLOR", (3, -1), (3, -1), PRIMARY),
            ]
        )
    )
    return [table]


def _payment(doc: InvoiceDocument, s: dict[str, ParagraphStyle]) -> list:
    terms = Paragraph(
        f"Payment is due by {doc.due_date.strftime('%B %d, %Y')}.",
        s["body"],
    )
    if not doc.payment_link:
        return [terms]
    link = _text(doc.payment_link)
    details = [
        terms,
        Spacer(1, 4),
        Paragraph("Pay online:", s["label"]),
        Paragraph(f'<link href="{link}">{link}</link>', s["small"]),
    ]
    table = Table([[details, _qr_drawing(doc.payment_link)]], colWidths=[5.5 * inch, 1.4 * inch])
    table.setStyle(TableStyle([("VALIGN", (0, 0), (-1, -1), "TOP"), ("LEFTPADDING", (0, 0), (-1, -1), 0)]))
    return [table]


def render_invoice_pdf(doc: InvoiceDocument) -> bytes:
    buffer = io.BytesIO()
    template = SimpleDocTemplate(
        buffer,
        pagesize=letter,
        topMargin=0.5 * inch,
        bottomMargin=0.75 * inch,
        leftMargin=0.7 * inch,
        rightMargin=0.7 * inch,
        title=f"Invoice {doc.invoice_number}",
        author=doc.organization_name,
    )
    s = _styles()
    story: list = []
    story.extend(_header(doc, s))
    story.append(Spacer(1, 14))
    story.extend(_meta(doc, s))
    story.append(Spacer(1, 16))
    story.extend(_line_items(doc, s))
    story.append(Spacer(1, 18))
    story.extend(_payment(doc, s))
    for note in doc.notes:
        story.append(Spacer(1, 6))
        story.append(Paragraph(_text(note), s["small"]))
    story.append(Spacer(1, 24))
    story.append(Paragraph(f"Thank you for your membership with {_text(doc.organization_name)}.", s["footer"]))

    try:
        template.build(story)
    except Exception as exc:  # reportlab raises LayoutError, ValueError and friends
        raise RenderError(f"Could not render invoice {doc.invoice_number}: {exc}") from exc
    return buffer.getvalue()


class PdfRenderer:
    def render(self, document: InvoiceDocument) -> bytes:
        data = render_invoice_pdf(document)
        _LOG.debug("Rendered invoice %s (%d bytes)", document.invoice_number, len(data))
        return data
