"""Membership records fetched from the CRM and the price they resolve to."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Union


# Attribute keys shared by the CRM mapping and the pricing rules.
ATTR_US_STATES = "us_states"
ATTR_CANADIAN_PROVINCES = "canadian_provinces"
ATTR_NON_NA_TERRITORIES = "non_na_territories"
ATTR_MANUFACTURER_LEVEL = "manufacturer_level"
ATTR_RENEWAL_DATE = "renewal_date"
TERRITORY_ATTRIBUTES = (ATTR_US_STATES, ATTR_CANADIAN_PROVINCES, ATTR_NON_NA_TERRITORIES)


class EntityKind(str, Enum):
    COMPANY = "Company"
    INDIVIDUAL = "Individual"


class Category(str, Enum):
    DISTRIBUTOR = "Distributor"
    MANUFACTURER = "Manufacturer"
    SERVICE_PROVIDER = "ServiceProvider"
    INDIVIDUAL = "Individual"


@dataclass(frozen=True)
class Company:
    id: str
    name: str
    company_id: str
    category: Category | None
    category_label: str = ""
    attributes: dict[str, Any] = field(default_factory=dict)
    billing_contact_id: str | None = None

    @property
    def kind(self) -> EntityKind:
        return EntityKind.COMPANY

    @property
    def home_territory(self) -> str:
        return str(self.attributes.get("state") or "").strip()


@dataclass(frozen=True)
class Individual:
    id: str
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    attributes: dict[str, Any] = field(default_factory=dict)

    @property
    def kind(self) -> EntityKind:
        return EntityKind.INDIVIDUAL

    @property
    def category(self) -> Category:
        return Category.INDIVIDUAL

    @property
    def category_label(self) -> str:
        return Category.INDIVIDUAL.value

    @property
    def billing_contact_id(self) -> str:
        return self.id

    @property
    def name(self) -> str:
        full_name = f"{self.first_name} {self.last_name}".strip()
        return full_name or self.email or self.id


MembershipEntity = Union[Company, Individual]


@dataclass(frozen=True)
class BillingContact:
    id: str
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    address: str = ""
    city: str = ""
    state: str = ""
    zip: str = ""

    @property
    def display_name(self) -> str:
        full_name = f"{self.first_name} {self.last_name}".strip()
        return full_name or self.email or self.id

    def address_lines(self) -> list[str]:
        region = " ".join(part for part in (self.state.strip(), self.zip.strip()) if part)
        locality = ", ".join(part for part in (self.city.strip(), region) if part)
        return [line for line in (self.address.strip(), locality) if line]


@dataclass(frozen=True)
class LineItem:
    name: str
    quantity: int
    unit_price: Decimal
    description: str = ""
    product_ref: str | None = None

    @property
    def amount(self) -> Decimal:
        return (self.unit_price * self.quantity).quantize(Decimal("0.01"))


@dataclass(frozen=True)
class PriceResult:
    total_amount: Decimal
    line_items: tuple[LineItem, ...]
    details: dict[str, Any] = field(default_factory=dict)
