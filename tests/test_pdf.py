from datetime import date
from decimal import Decimal
from io import BytesIO

from pypdf import PdfReader

from dues_invoicing.entities import LineItem
from dues_invoicing.pdf import InvoiceDocument, PdfRenderer, render_invoice_pdf


def _document(**overrides) -> InvoiceDocument:
    values = {
        "invoice_number": "INV-1001",
        "issue_date": date(2025, 1, 15),
        "due_date": date(2025, 2, 14),
        "organization_name": "Regional Distributors Association",
        "bill_to_name": "Acme Supply & Sons",
        "bill_to_lines": ("Attn: Alex Buyer", "1 Main St", "Fresno, CA 93650"),
        "line_items": (
            LineItem(name="Distributor Membership Base Fee", quantity=1, unit_price=Decimal("929.00")),
            LineItem(name="Home Territory", quantity=1, unit_price=Decimal("0.00"), description="CA included."),
            LineItem(
                name="Additional Territory Charges",
                quantity=2,
                unit_price=Decimal("70.00"),
                description="2 additional territories at $70.00 each: NV, AZ.",
            ),
        ),
        "total": Decimal("1069.00"),
        "membership_label": "Distributor Membership",
    }
    values.update(overrides)
    return InvoiceDocument(**values)


def _text(data: bytes) -> str:
    reader = PdfReader(BytesIO(data))
    return "\n".join(page.extract_text() for page in reader.pages)


def test_rendered_invoice_contains_billing_details() -> None:
    data = render_invoice_pdf(_document())

    assert data.startswith(b"%PDF")
    text = _text(data)
    assert "INV-1001" in text
    assert "Acme Supply & Sons" in text
    assert "Additional Territory Charges" in text
    assert "$1,069.00" in text
    assert "February 14, 2025" in text


def test_payment_link_rendered_with_qr_code() -> None:
    data = PdfRenderer().render(_document(payment_link="https://app.hubspot.com/payments/abc?x=1&y=2"))

    text = _text(data)
    assert "Pay online" in text
    assert "https://app.hubspot.com/payments/abc" in text


def test_preview_note_and_foreign_currency() -> None:
    data = render_invoice_pdf(
        _document(currency="CAD", notes=("Preview only. This invoice has not been issued.",))
    )

    text = _text(data)
    assert "CAD 1,069.00" in text
    assert "Preview only" in text
