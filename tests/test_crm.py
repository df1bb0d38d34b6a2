from datetime import date
from decimal import Decimal

import pytest

from conftest import make_hubspot_settings
from dues_invoicing.config import MEMBERSHIP_OBJECT_TYPE_ID
from dues_invoicing.crm import OPEN_INVOICE_STATUSES, HubSpotCrm
from dues_invoicing.entities import BillingContact, Category, Company, Individual, LineItem
from dues_invoicing.hubspot import HubSpotError


class FakeClient:
    def __init__(self) -> None:
        self.search_results: dict[str, list[dict]] = {}
        self.records: dict[tuple[str, str], dict] = {}
        self.associations: dict[tuple[str, str, str], list[dict]] = {}
        self.missing_products: set[str] = set()
        self.searches: list[tuple[str, list, dict]] = []
        self.created: list[tuple[str, dict]] = []
        self.updates: list[tuple[str, str, dict]] = []
        self.links: list[tuple[str, str, str, str, int]] = []

    def search(self, object_type, filters, properties, *, sorts=None, limit=None):
        self.searches.append((object_type, filters, {"sorts": sorts, "limit": limit}))
        return self.search_results.get(object_type, [])

    def get_by_id(self, object_type, object_id, properties):
        record = self.records.get((object_type, object_id))
        if record is None:
            raise HubSpotError(f"{object_type} {object_id} not found", status=404)
        return record

    def get_associations(self, from_type, from_id, to_type, *, limit=100):
        return self.associations.get((from_type, from_id, to_type), [])

    def create(self, object_type, properties, associations=None):
        if properties.get("hs_product_id") in self.missing_products:
            raise HubSpotError("Product not found", status=404)
        self.created.append((object_type, properties))
        return {"id": f"{object_type}-{len(self.created)}"}

    def update(self, object_type, object_id, properties):
        self.updates.append((object_type, object_id, properties))
        return {}

    def create_association(self, from_type, from_id, to_type, to_id, association_type_id):
        self.links.append((from_type, from_id, to_type, to_id, association_type_id))


def _crm(client: FakeClient, **overrides) -> HubSpotCrm:
    return HubSpotCrm(client, make_hubspot_settings(**overrides))


def test_fetch_expiring_memberships_builds_companies_and_individuals() -> None:
    client = FakeClient()
    client.search_results[MEMBERSHIP_OBJECT_TYPE_ID] = [
        {
            "id": "m-1",
            "properties": {
                "company_name": "Acme Supply",
                "distributor_us_states": "California;Nevada",
                "distributor_canadian_provinces": "Ontario",
                "paid_through_date": "1738281600000",
            },
        },
        {"id": "m-2", "properties": {"company_name": "Orphan Co"}},
    ]
    client.associations[(MEMBERSHIP_OBJECT_TYPE_ID, "m-1", "companies")] = [{"toObjectId": 501}]
    client.records[("companies", "501")] = {
        "id": "501",
        "properties": {"name": "Acme Supply Inc", "state": "California", "membership_type": "Distributor"},
    }
    client.search_results["contacts"] = [
        {
            "id": "p-1",
            "properties": {"firstname": "Pat", "lastname": "Member", "email": "PAT@example.com", "state": "TX"},
        }
    ]

    candidates = _crm(client).fetch_expiring_memberships(date(2025, 1, 31))

    company, person = candidates.entities
    assert isinstance(company, Company)
    assert company.id == "m-1"
    assert company.company_id == "501"
    assert company.name == "Acme Supply Inc"
    assert company.category is Category.DISTRIBUTOR
    assert company.home_territory == "California"
    assert company.attributes["us_states"] == "California;Nevada"
    assert company.attributes["canadian_provinces"] == "Ontario"
    assert isinstance(person, Individual)
    assert person.email == "pat@example.com"
    assert [item.id for item in candidates.rejected] == ["m-2"]
    assert "no company associated" in candidates.rejected[0].reason

    membership_search = client.searches[0]
    assert membership_search[1][0] == {"propertyName": "paid_through_date", "operator": "EQ", "value": "1738281600000"}
    contact_filters = client.searches[1][1]
    assert {"propertyName": "membership_type", "operator": "EQ", "value": "Individual"} in contact_filters


def test_company_lookup_error_rejects_only_that_membership() -> None:
    client = FakeClient()
    client.search_results[MEMBERSHIP_OBJECT_TYPE_ID] = [{"id": "m-1", "properties": {"company_name": "Gone Co"}}]
    client.associations[(MEMBERSHIP_OBJECT_TYPE_ID, "m-1", "companies")] = [{"toObjectId": "404"}]

    candidates = _crm(client).fetch_expiring_companies(date(2025, 1, 31))

    assert candidates.entities == []
    assert candidates.rejected[0].reason.startswith("company lookup failed")


def test_unknown_membership_label_keeps_raw_label() -> None:
    crm = _crm(FakeClient())

    assert crm.category_for("service provider") is Category.SERVICE_PROVIDER
    assert crm.category_for("Associate") is None


def test_primary_contact_prefers_configured_association_type() -> None:
    client = FakeClient()
    client.associations[("companies", "501", "contacts")] = [
        {"toObjectId": 11, "associationTypes": [{"typeId": 279}]},
        {"toObjectId": 12, "associationTypes": [{"typeId": 1}]},
    ]
    client.records[("contacts", "11")] = {"id": "11", "properties": {"firstname": "First"}}
    client.records[("contacts", "12")] = {
        "id": "12",
        "properties": {"firstname": "Primary", "lastname": "Person", "address": "9 Elm", "city": "Reno"},
    }

    contact = _crm(client, primary_contact_association_type_id=1).get_primary_contact("501")
    fallback = _crm(client).get_primary_contact("501")

    assert contact.id == "12"
    assert contact.display_name == "Primary Person"
    assert contact.address_lines() == ["9 Elm", "Reno"]
    assert fallback.id == "11"


def test_primary_contact_missing_returns_none() -> None:
    assert _crm(FakeClient()).get_primary_contact("501") is None


@pytest.mark.parametrize("status", OPEN_INVOICE_STATUSES)
def test_find_open_invoice_for_every_open_status(status: str) -> None:
    client = FakeClient()
    client.search_results["invoices"] = [{"id": "inv-7", "properties": {"hs_status": status.lower()}}]

    found = _crm(client).find_open_invoice("42")

    assert found.id == "inv-7"
    assert found.status == status
    filters = client.searches[0][1]
    assert filters[0] == {"propertyName": "associations.contact", "operator": "EQ", "value": "42"}
    assert filters[1]["values"] == list(OPEN_INVOICE_STATUSES)


def test_find_open_invoice_ignores_paid() -> None:
    client = FakeClient()
    client.search_results["invoices"] = [{"id": "inv-8", "properties": {"hs_status": "PAID"}}]

    assert _crm(client).find_open_invoice("42") is None


def test_create_invoice_associates_and_opens() -> None:
    client = FakeClient()
    contact = BillingContact(id="42", first_name="Alex")
    items = (
        LineItem(name="Base", quantity=1, unit_price=Decimal("929.00")),
        LineItem(name="Territories", quantity=2, unit_price=Decimal("70.00")),
    )

    created = _crm(client).create_invoice(contact, items, company_id="501", due=date(2025, 2, 14))

    assert created.id == "invoices-1"
    assert created.status == "open"
    assert created.line_item_ids == ("line_items-2", "line_items-3")
    assert client.created[1][1]["quantity"] == "1"
    assert client.created[2][1]["price"] == "70.00"
    assert ("invoices", "invoices-1", "contacts", "42", 177) in client.links
    assert ("invoices", "invoices-1", "companies", "501", 179) in client.links
    assert ("invoices", "invoices-1", "line_items", "line_items-2", 409) in client.links
    assert client.updates[-1] == (
        "invoices",
        "invoices-1",
        {"hs_due_date": "2025-02-14", "hs_invoice_status": "open"},
    )


def test_create_invoice_keep_draft_leaves_status() -> None:
    client = FakeClient()
    item = LineItem(name="Individual Membership Fee", quantity=1, unit_price=Decimal("349.00"))

    created = _crm(client).create_invoice(
        BillingContact(id="7"), (item,), company_id=None, due=date(2025, 2, 14), keep_draft=True
    )

    assert created.status == "draft"
    assert "hs_invoice_status" not in client.updates[-1][2]
    assert not any(link[2] == "companies" for link in client.links)


def test_missing_product_falls_back_to_custom_line_item() -> None:
    client = FakeClient()
    client.missing_products.add("prod-1")
    item = LineItem(name="Service Provider Membership Fee", quantity=1, unit_price=Decimal("1250.00"), product_ref="prod-1")

    _crm(client).create_invoice(BillingContact(id="7"), (item,), company_id="501", due=date(2025, 2, 14))

    line_item_props = client.created[1][1]
    assert "hs_product_id" not in line_item_props
    assert line_item_props["name"] == "Service Provider Membership Fee"


def test_payment_link_is_best_effort() -> None:
    client = FakeClient()
    client.records[("invoices", "inv-1")] = {"id": "inv-1", "properties": {"hs_invoice_link": "https://pay/1"}}
    crm = _crm(client)

    assert crm.get_payment_link("inv-1") == "https://pay/1"
    assert crm.get_payment_link("inv-missing") is None


def test_write_backs() -> None:
    client = FakeClient()
    crm = _crm(client)

    crm.set_invoice_pdf_link("inv-1", "https://files/inv-1.pdf")
    crm.update_company_dues("501", Decimal("1069.00"))

    assert client.updates == [
        ("invoices", "inv-1", {"printable_invoice_url": "https://files/inv-1.pdf"}),
        ("companies", "501", {"membership_dues": "1069.00"}),
    ]
