from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

import pytest

from dues_invoicing.config import HubSpotSettings, MailSettings, Settings
from dues_invoicing.crm import Candidates, CreatedInvoice
from dues_invoicing.entities import BillingContact, Category, Company, Individual
from dues_invoicing.errors import InvoicingError
from dues_invoicing.hubspot import HubSpotError

FIXED_NOW = datetime(2025, 1, 15, 9, 30, tzinfo=timezone.utc)


def make_hubspot_settings(**overrides) -> HubSpotSettings:
    values = {
        "access_token": "pat-test",
        "association_invoice_to_contact": 177,
        "association_invoice_to_company": 179,
    }
    values.update(overrides)
    return HubSpotSettings(**values)


def make_settings(tmp_path: Path, **overrides) -> Settings:
    values = {
        "hubspot": make_hubspot_settings(),
        "mail": MailSettings(),
        "throttle_seconds": 0.0,
        "run_state_db": tmp_path / "run_state.sqlite3",
    }
    values.update(overrides)
    return Settings(**values)


def distributor(entity_id: str = "m-1", **attributes) -> Company:
    attrs = {"state": "California", "us_states": "California;Nevada;Arizona", "city": "Fresno", "zip": "93650"}
    attrs.update(attributes)
    return Company(
        id=entity_id,
        name=f"Distributor {entity_id}",
        company_id=f"c-{entity_id}",
        category=Category.DISTRIBUTOR,
        category_label="Distributor",
        attributes=attrs,
    )


def manufacturer(entity_id: str = "m-2", level: str = "$1,500 (<$5M)") -> Company:
    return Company(
        id=entity_id,
        name=f"Manufacturer {entity_id}",
        company_id=f"c-{entity_id}",
        category=Category.MANUFACTURER,
        category_label="Manufacturer",
        attributes={"manufacturer_level": level, "state": "OH"},
    )


def individual(entity_id: str = "p-1") -> Individual:
    return Individual(
        id=entity_id,
        first_name="Pat",
        last_name="Member",
        email="pat@example.com",
        attributes={"address": "1 Main St", "city": "Austin", "state": "TX", "zip": "73301"},
    )


class FakeCrm:
    """In-memory stand-in for HubSpotCrm that records every write."""

    def __init__(self, entities=(), rejected=()) -> None:
        self.entities = list(entities)
        self.rejected = list(rejected)
        self.contacts: dict[str, BillingContact | None] = {}
        self.open_invoices: dict[str, object] = {}
        self.fail_open_lookup = False
        self.fail_create_for: set[str] = set()
        self.payment_link: str | None = "https://pay.example.com/inv"
        self.fetch_calls: list = []
        self.contact_lookups: list[str] = []
        self.created: list[dict] = []
        self.pdf_links: list[tuple[str, str]] = []
        self.dues_updates: list[tuple[str, Decimal]] = []

    def fetch_expiring_memberships(self, target):
        self.fetch_calls.append(target)
        return Candidates(entities=list(self.entities), rejected=list(self.rejected))

    def get_primary_contact(self, company_id: str):
        self.contact_lookups.append(company_id)
        if company_id in self.contacts:
            return self.contacts[company_id]
        return BillingContact(id=f"contact-{company_id}", first_name="Alex", last_name="Buyer", email="alex@example.com")

    def find_open_invoice(self, contact_id: str):
        if self.fail_open_lookup:
            raise HubSpotError("search unavailable", status=503)
        return self.open_invoices.get(contact_id)

    def create_invoice(self, contact, line_items, *, company_id, due, keep_draft=False):
        if contact.id in self.fail_create_for:
            raise HubSpotError("invoice create failed", status=500)
        invoice_id = f"inv-{len(self.created) + 1}"
        self.created.append(
            {
                "id": invoice_id,
                "contact_id": contact.id,
                "company_id": company_id,
                "line_items": line_items,
                "due": due,
                "keep_draft": keep_draft,
            }
        )
        return CreatedInvoice(id=invoice_id, status="draft" if keep_draft else "open")

    def get_payment_link(self, invoice_id: str):
        return self.payment_link

    def set_invoice_pdf_link(self, invoice_id: str, url: str) -> None:
        self.pdf_links.append((invoice_id, url))

    def update_company_dues(self, company_id: str, amount: Decimal) -> None:
        self.dues_updates.append((company_id, amount))


class FakeRenderer:
    def __init__(self) -> None:
        self.documents = []

    def render(self, document) -> bytes:
        self.documents.append(document)
        return b"%PDF-1.4 fake " + document.invoice_number.encode("utf-8")


class FakeMailer:
    def __init__(self, fail: bool = False) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.fail = fail

    def send(self, to: str, subject: str, body: str):
        if self.fail:
            raise InvoicingError("mailgun down")
        self.sent.append((to, subject, body))
        return "<msg-1@example.com>"


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return make_settings(tmp_path)
