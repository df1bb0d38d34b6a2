from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

from .config import HubSpotSettings
from .entities import (
    ATTR_CANADIAN_PROVINCES,
    ATTR_MANUFACTURER_LEVEL,
    ATTR_NON_NA_TERRITORIES,
    ATTR_RENEWAL_DATE,
    ATTR_US_STATES,
    BillingContact,
    Category,
    Company,
    Individual,
    LineItem,
    MembershipEntity,
)
from .hubspot import HubSpotClient, HubSpotError
from .periods import to_epoch_millis

_LOG = logging.getLogger(__name__)

OPEN_INVOICE_STATUSES = ("SENT", "DRAFT", "PROCESSING", "OVERDUE")

COMPANY_OBJECT = "companies"
CONTACT_OBJECT = "contacts"
LINE_ITEM_OBJECT = "line_items"

ADDRESS_PROPERTIES = ["address", "city", "state", "zip"]
CONTACT_PROPERTIES = ["email", "firstname", "lastname", *ADDRESS_PROPERTIES]


@dataclass
class RejectedCandidate:
    id: str
    name: str
    reason: str


@dataclass
class Candidates:
    entities: list[MembershipEntity] = field(default_factory=list)
    rejected: list[RejectedCandidate] = field(default_factory=list)


@dataclass(frozen=True)
class OpenInvoice:
    id: str
    status: str


@dataclass(frozen=True)
class CreatedInvoice:
    id: str
    status: str
    line_item_ids: tuple[str, ...] = ()


def _props(record: dict[str, Any]) -> dict[str, Any]:
    properties = record.get("properties")
    return properties if isinstance(properties, dict) else {}


def _text(value: Any) -> str:
    return str(value or "").strip()


def _contact_from_record(record: dict[str, Any]) -> BillingContact:
    props = _props(record)
    return BillingContact(
        id=_text(record.get("id")),
        first_name=_text(props.get("firstname")),
        last_name=_text(props.get("lastname")),
        email=_text(props.get("email")).lower(),
        address=_text(props.get("address")),
        city=_text(props.get("city")),
        state=_text(props.get("state")),
        zip=_text(props.get("zip")),
    )


class HubSpotCrm:
    def __init__(self, client: HubSpotClient, settings: HubSpotSettings, *, currency: str = "USD") -> None:
        self.client = client
        self.settings = settings
        self.currency = currency

    # Retrieval

    def category_for(self, label: str | None) -> Category | None:
        labels = {
            self.settings.distributor_label.casefold(): Category.DISTRIBUTOR,
            self.settings.manufacturer_label.casefold(): Category.MANUFACTURER,
            self.settings.service_provider_label.casefold(): Category.SERVICE_PROVIDER,
        }
        return labels.get(_text(label).casefold())

    def fetch_expiring_memberships(self, target: date) -> Candidates:
        candidates = self.fetch_expiring_companies(target)
        candidates.entities.extend(self.fetch_expiring_individuals(target))
        return candidates

    def fetch_expiring_companies(self, target: date) -> Candidates:
        s = self.settings
        memberships = self.client.search(
            s.membership_object_type,
            [{"propertyName": s.renewal_date_property, "operator": "EQ", "value": str(to_epoch_millis(target))}],
            [
                "company_membership_name",
                "company_name",
                "status",
                s.renewal_date_property,
                s.us_states_property,
                s.canadian_provinces_property,
                s.non_na_territories_property,
                s.manufacturer_level_property,
            ],
        )
        _LOG.info("Found %d company memberships renewing on %s", len(memberships), target.isoformat())

        candidates = Candidates()
        for membership in memberships:
            membership_id = _text(membership.get("id"))
            name = _text(_props(membership).get("company_name")) or membership_id
            try:
                candidates.entities.append(self._company_from_membership(membership))
            except HubSpotError as exc:
                _LOG.error("Could not load company for membership %s (%s): %s", membership_id, name, exc)
                candidates.rejected.append(RejectedCandidate(membership_id, name, f"company lookup failed: {exc}"))
            except LookupError as exc:
                _LOG.warning("Skipping membership %s (%s): %s", membership_id, name, exc)
                candidates.rejected.append(RejectedCandidate(membership_id, name, str(exc)))
        return candidates

    def _company_from_membership(self, membership: dict[str, Any]) -> Company:
        s = self.settings
        membership_id = _text(membership.get("id"))
        links = self.client.get_associations(s.membership_object_type, membership_id, COMPANY_OBJECT, limit=1)
        if not links:
            raise LookupError("no company associated with membership")
        company_id = _text(links[0].get("toObjectId"))

        company = self.client.get_by_id(
            COMPANY_OBJECT,
            company_id,
            ["name", *ADDRESS_PROPERTIES, s.membership_type_property, s.manufacturer_level_property],
        )
        company_props = _props(company)
        membership_props = _props(membership)
        label = _text(company_props.get(s.membership_type_property))

        attributes = {key: _text(company_props.get(key)) for key in ADDRESS_PROPERTIES}
        attributes.update(
            {
                ATTR_US_STATES: _text(membership_props.get(s.us_states_property)),
                ATTR_CANADIAN_PROVINCES: _text(membership_props.get(s.canadian_provinces_property)),
                ATTR_NON_NA_TERRITORIES: _text(membership_props.get(s.non_na_territories_property)),
                ATTR_MANUFACTURER_LEVEL: _text(
                    company_props.get(s.manufacturer_level_property)
                    or membership_props.get(s.manufacturer_level_property)
                ),
                ATTR_RENEWAL_DATE: _text(membership_props.get(s.renewal_date_property)),
                "membership_name": _text(membership_props.get("company_membership_name")),
                "membership_status": _text(membership_props.get("status")),
            }
        )
        return Company(
            id=membership_id,
            name=_text(company_props.get("name")) or _text(membership_props.get("company_name")) or membership_id,
            company_id=company_id,
            category=self.category_for(label),
            category_label=label,
            attributes=attributes,
        )

    def fetch_expiring_individuals(self, target: date) -> list[Individual]:
        s = self.settings
        contacts = self.client.search(
            CONTACT_OBJECT,
            [
                {
                    "propertyName": s.individual_paid_through_property,
                    "operator": "EQ",
                    "value": str(to_epoch_millis(target)),
                },
                {"propertyName": s.membership_type_property, "operator": "EQ", "value": s.individual_label},
            ],
            [*CONTACT_PROPERTIES, s.individual_paid_through_property, s.membership_type_property],
        )
        _LOG.info("Found %d individual memberships renewing on %s", len(contacts), target.isoformat())

        individuals: list[Individual] = []
        for record in contacts:
            props = _props(record)
            attributes = {key: _text(props.get(key)) for key in ADDRESS_PROPERTIES}
            attributes[ATTR_RENEWAL_DATE] = _text(props.get(s.individual_paid_through_property))
            individuals.append(
                Individual(
                    id=_text(record.get("id")),
                    first_name=_text(props.get("firstname")),
                    last_name=_text(props.get("lastname")),
                    email=_text(props.get("email")).lower(),
                    attributes=attributes,
                )
            )
        return individuals

    # Contacts

    def get_contact(self, contact_id: str) -> BillingContact:
        return _contact_from_record(self.client.get_by_id(CONTACT_OBJECT, contact_id, CONTACT_PROPERTIES))

    def get_primary_contact(self, company_id: str) -> BillingContact | None:
        links = self.client.get_associations(COMPANY_OBJECT, company_id, CONTACT_OBJECT)
        if not links:
            _LOG.warning("No contacts associated with company %s", company_id)
            return None

        contact_id = ""
        primary_type = self.settings.primary_contact_association_type_id
        if primary_type is not None:
            for link in links:
                types = link.get("associationTypes") or []
                if any(_text(item.get("typeId")) == str(primary_type) for item in types if isinstance(item, dict)):
                    contact_id = _text(link.get("toObjectId"))
                    break
        if not contact_id:
            contact_id = _text(links[0].get("toObjectId"))
        if not contact_id:
            return None
        return self.get_contact(contact_id)

    # Invoices

    def find_open_invoice(self, contact_id: str) -> OpenInvoice | None:
        status_property = self.settings.invoice_status_property
        rows = self.client.search(
            self.settings.invoice_object_type,
            [
                {"propertyName": "associations.contact", "operator": "EQ", "value": str(contact_id)},
                {"propertyName": status_property, "operator": "IN", "values": list(OPEN_INVOICE_STATUSES)},
            ],
            ["hs_object_id", status_property],
            sorts=[{"propertyName": "createdate", "direction": "DESCENDING"}],
            limit=1,
        )
        for row in rows:
            status = _text(_props(row).get(status_property)).upper()
            # Search filters are advisory on some portals; recheck locally.
            if status in OPEN_INVOICE_STATUSES:
                return OpenInvoice(id=_text(row.get("id")), status=status)
        return None

    def _create_line_item(self, item: LineItem) -> str:
        properties: dict[str, Any] = {
            "name": item.name,
            "quantity": str(item.quantity),
            "price": str(item.unit_price),
            "description": item.description,
        }
        if item.product_ref:
            try:
                created = self.client.create(LINE_ITEM_OBJECT, {**properties, "hs_product_id": item.product_ref})
                return _text(created.get("id"))
            except HubSpotError as exc:
                if exc.status != 404 and "not found" not in str(exc).lower():
                    raise
                _LOG.warning("Product %s not found; creating %r as a custom line item", item.product_ref, item.name)
        created = self.client.create(LINE_ITEM_OBJECT, properties)
        return _text(created.get("id"))

    def create_invoice(
        self,
        contact: BillingContact,
        line_items: tuple[LineItem, ...],
        *,
        company_id: str | None,
        due: date,
        keep_draft: bool = False,
    ) -> CreatedInvoice:
        if not line_items:
            raise HubSpotError("An invoice needs at least one line item.")

        s = self.settings
        invoice = self.client.create(s.invoice_object_type, {"hs_currency": self.currency})
        invoice_id = _text(invoice.get("id"))
        _LOG.info("Draft invoice %s created for contact %s", invoice_id, contact.id)

        self.client.create_association(
            s.invoice_object_type, invoice_id, CONTACT_OBJECT, contact.id, s.association_invoice_to_contact
        )
        if company_id:
            self.client.create_association(
                s.invoice_object_type, invoice_id, COMPANY_OBJECT, company_id, s.association_invoice_to_company
            )

        line_item_ids: list[str] = []
        for item in line_items:
            line_item_id = self._create_line_item(item)
            self.client.create_association(
                s.invoice_object_type, invoice_id, LINE_ITEM_OBJECT, line_item_id, s.association_invoice_to_line_item
            )
            line_item_ids.append(line_item_id)

        updates: dict[str, Any] = {"hs_due_date": due.isoformat()}
        status = "draft"
        if not keep_draft:
            updates["hs_invoice_status"] = "open"
            status = "open"
        self.client.update(s.invoice_object_type, invoice_id, updates)
        return CreatedInvoice(id=invoice_id, status=status, line_item_ids=tuple(line_item_ids))

    def get_payment_link(self, invoice_id: str) -> str | None:
        try:
            record = self.client.get_by_id(self.settings.invoice_object_type, invoice_id, ["hs_invoice_link"])
        except HubSpotError as exc:
            _LOG.warning("Could not fetch payment link for invoice %s: %s", invoice_id, exc)
            return None
        link = _text(_props(record).get("hs_invoice_link"))
        return link or None

    def set_invoice_pdf_link(self, invoice_id: str, url: str) -> None:
        self.client.update(self.settings.invoice_object_type, invoice_id, {self.settings.invoice_pdf_link_property: url})

    def update_company_dues(self, company_id: str, amount: Decimal) -> None:
        self.client.update(COMPANY_OBJECT, company_id, {self.settings.company_dues_property: str(amount)})
