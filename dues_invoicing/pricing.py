from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation

from .config import PricingTable
from .entities import (
    ATTR_MANUFACTURER_LEVEL,
    TERRITORY_ATTRIBUTES,
    Category,
    Company,
    LineItem,
    MembershipEntity,
    PriceResult,
)
from .errors import PricingError
from .territories import billable_territories, excluded_territories, normalize

_LOG = logging.getLogger(__name__)

CENTS = Decimal("0.01")

DISTRIBUTOR_BASE_ITEM = "Distributor Membership Base Fee"
DISTRIBUTOR_HOME_ITEM = "Home Territory"
DISTRIBUTOR_TERRITORY_ITEM = "Additional Territory Charges"
MANUFACTURER_ITEM = "Manufacturer Membership Fee"
SERVICE_PROVIDER_ITEM = "Service Provider Membership Fee"
INDIVIDUAL_ITEM = "Individual Membership Fee"


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENTS)


def _result(line_items: list[LineItem], details: dict) -> PriceResult:
    total = _money(sum((item.amount for item in line_items), Decimal("0")))
    return PriceResult(total_amount=total, line_items=tuple(line_items), details={**details, "total": total})


def parse_manufacturer_level(label: str) -> Decimal:
    """Dues amount from a level label such as ``"$5,000 ($10M - $20M)"``."""
    amount_text = label.split("(", 1)[0].replace("$", "").replace(",", "").strip()
    try:
        amount = Decimal(amount_text)
    except (InvalidOperation, ValueError) as exc:
        raise PricingError(f"Invalid manufacturer membership level: {label!r}") from exc
    if not amount.is_finite() or amount <= 0:
        raise PricingError(f"Manufacturer membership level {label!r} is not a positive amount")
    return _money(amount)


def territory_breakdown(company: Company) -> tuple[list[str], list[str]]:
    raw_lists = [company.attributes.get(key) for key in TERRITORY_ATTRIBUTES]
    return (
        billable_territories(raw_lists, company.home_territory),
        excluded_territories(raw_lists, company.home_territory),
    )


def price_distributor(company: Company, pricing: PricingTable) -> PriceResult:
    billable, excluded = territory_breakdown(company)
    home = normalize(company.home_territory)
    base_fee = _money(pricing.distributor_base_fee)
    territory_fee = _money(pricing.distributor_territory_fee)

    line_items = [
        LineItem(
            name=DISTRIBUTOR_BASE_ITEM,
            quantity=1,
            unit_price=base_fee,
            description="Annual base fee for Distributor Membership.",
        ),
        LineItem(
            name=DISTRIBUTOR_HOME_ITEM,
            quantity=1,
            unit_price=_money(Decimal("0")),
            description=f"Home territory {home or 'not on file'} is included with the base fee.",
        ),
    ]
    if billable:
        line_items.append(
            LineItem(
                name=DISTRIBUTOR_TERRITORY_ITEM,
                quantity=len(billable),
                unit_price=territory_fee,
                description=(
                    f"{len(billable)} additional territories at ${territory_fee} each: {', '.join(billable)}."
                ),
            )
        )

    return _result(
        line_items,
        {
            "category": Category.DISTRIBUTOR.value,
            "base_fee": base_fee,
            "territory_fee": territory_fee,
            "home_territory": home,
            "billable_territories": billable,
            "excluded_territories": excluded,
            "billable_count": len(billable),
        },
    )


def price_manufacturer(company: Company, pricing: PricingTable) -> PriceResult:
    label = str(company.attributes.get(ATTR_MANUFACTURER_LEVEL) or "").strip()
    if label:
        fee = parse_manufacturer_level(label)
        description = f"Membership fee based on level: {label}."
    else:
        _LOG.warning(
            "Manufacturer level missing for %s (%s); using default fee %s",
            company.name,
            company.id,
            pricing.manufacturer_default_fee,
            extra={"entity_id": company.id},
        )
        fee = _money(pricing.manufacturer_default_fee)
        description = "Annual fee for Manufacturer Membership."

    return _result(
        [LineItem(name=MANUFACTURER_ITEM, quantity=1, unit_price=fee, description=description)],
        {"category": Category.MANUFACTURER.value, "level": label or None, "used_default": not label},
    )


def price_service_provider(company: Company, pricing: PricingTable) -> PriceResult:
    fee = _money(pricing.service_provider_fee)
    item = LineItem(
        name=SERVICE_PROVIDER_ITEM,
        quantity=1,
        unit_price=fee,
        description="Annual flat rate fee for Service Provider Membership.",
        product_ref=pricing.service_provider_product_id,
    )
    return _result([item], {"category": Category.SERVICE_PROVIDER.value, "flat_fee": fee})


def price_individual(pricing: PricingTable) -> PriceResult:
    fee = _money(pricing.individual_fee)
    item = LineItem(
        name=INDIVIDUAL_ITEM,
        quantity=1,
        unit_price=fee,
        description="Annual fee for Individual Membership.",
        product_ref=pricing.individual_product_id,
    )
    return _result([item], {"category": Category.INDIVIDUAL.value, "flat_fee": fee})


def resolve_price(entity: MembershipEntity, pricing: PricingTable) -> PriceResult:
    category = entity.category
    if category is Category.INDIVIDUAL:
        return price_individual(pricing)
    if category is Category.DISTRIBUTOR:
        return price_distributor(entity, pricing)
    if category is Category.MANUFACTURER:
        return price_manufacturer(entity, pricing)
    if category is Category.SERVICE_PROVIDER:
        return price_service_provider(entity, pricing)
    raise PricingError(f"unknown membership type: {entity.category_label or 'blank'}")
