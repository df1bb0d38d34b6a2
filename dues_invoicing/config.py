from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path

from .errors import ConfigError

_LOG = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path("data")
HUBSPOT_BASE_URL = "https://api.hubapi.com"
MAILGUN_BASE_URL = "https://api.mailgun.net/v3"
MEMBERSHIP_OBJECT_TYPE_ID = "2-45511388"

REQUIRED_ENV = (
    "HUBSPOT_ACCESS_TOKEN",
    "HUBSPOT_ASSOCIATION_TYPE_ID_INVOICE_TO_CONTACT",
    "HUBSPOT_ASSOCIATION_TYPE_ID_INVOICE_TO_COMPANY",
)


@dataclass(frozen=True)
class PricingTable:
    distributor_base_fee: Decimal = Decimal("929.00")
    distributor_territory_fee: Decimal = Decimal("70.00")
    manufacturer_default_fee: Decimal = Decimal("1500.00")
    service_provider_fee: Decimal = Decimal("1250.00")
    individual_fee: Decimal = Decimal("349.00")
    service_provider_product_id: str | None = None
    individual_product_id: str | None = None


@dataclass(frozen=True)
class HubSpotSettings:
    access_token: str
    association_invoice_to_contact: int
    association_invoice_to_company: int
    association_invoice_to_line_item: int = 409
    primary_contact_association_type_id: int | None = None
    base_url: str = HUBSPOT_BASE_URL
    timeout_seconds: float = 30.0
    membership_object_type: str = MEMBERSHIP_OBJECT_TYPE_ID
    invoice_object_type: str = "invoices"
    renewal_date_property: str = "paid_through_date"
    individual_paid_through_property: str = "paid_through_date"
    membership_type_property: str = "membership_type"
    company_dues_property: str = "membership_dues"
    us_states_property: str = "distributor_us_states"
    canadian_provinces_property: str = "distributor_canadian_provinces"
    non_na_territories_property: str = "distributor_non_na_territories"
    manufacturer_level_property: str = "manufacturer_membership_level"
    invoice_pdf_link_property: str = "printable_invoice_url"
    invoice_status_property: str = "hs_status"
    individual_label: str = "Individual"
    distributor_label: str = "Distributor"
    manufacturer_label: str = "Manufacturer"
    service_provider_label: str = "Service Provider"


@dataclass(frozen=True)
class MailSettings:
    api_key: str = ""
    domain: str = ""
    sender: str = ""
    report_recipient: str = ""
    error_recipient: str = ""
    report_enabled: bool = True
    error_enabled: bool = True
    base_url: str = MAILGUN_BASE_URL

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.domain and self.sender)

    @property
    def can_send_reports(self) -> bool:
        return self.report_enabled and self.configured and bool(self.report_recipient)

    @property
    def can_send_errors(self) -> bool:
        return self.error_enabled and self.configured and bool(self.error_recipient)


@dataclass(frozen=True)
class StorageSettings:
    local_dir: Path = DEFAULT_DATA_DIR / "storage"
    supabase_url: str = ""
    supabase_key: str = ""
    bucket: str = "membership-invoices"

    @property
    def uses_supabase(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)


@dataclass(frozen=True)
class Settings:
    hubspot: HubSpotSettings
    pricing: PricingTable = field(default_factory=PricingTable)
    mail: MailSettings = field(default_factory=MailSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    organization_name: str = "Membership Services"
    currency: str = "USD"
    due_days: int = 30
    month_offset: int = 0
    day_of_month: int = 0
    throttle_seconds: float = 1.0
    state_flush_every: int = 5
    time_budget_seconds: float = 840.0
    time_budget_reserve_seconds: float = 60.0
    run_state_db: Path = DEFAULT_DATA_DIR / "run_state.sqlite3"


def _env(environ: Mapping[str, str], name: str, default: str = "") -> str:
    return (environ.get(name) or default).strip()


def _decimal(environ: Mapping[str, str], name: str, default: str) -> Decimal:
    raw = _env(environ, name, default)
    try:
        value = Decimal(raw.replace("$", "").replace(",", ""))
    except InvalidOperation as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}.") from exc
    if not value.is_finite():
        raise ConfigError(f"{name} must be a finite number, got {raw!r}.")
    if value < 0:
        raise ConfigError(f"{name} must not be negative.")
    return value.quantize(Decimal("0.01"))


def _int(environ: Mapping[str, str], name: str, default: int | None = None) -> int | None:
    raw = _env(environ, name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}.") from exc


def _float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = _env(environ, name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}.") from exc


def _flag(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw = _env(environ, name).lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


def _load_hubspot(environ: Mapping[str, str]) -> HubSpotSettings:
    missing = [name for name in REQUIRED_ENV if not _env(environ, name)]
    if missing:
        raise ConfigError(f"Missing required configuration: {', '.join(missing)}")

    defaults = HubSpotSettings(access_token="", association_invoice_to_contact=0, association_invoice_to_company=0)
    return HubSpotSettings(
        access_token=_env(environ, "HUBSPOT_ACCESS_TOKEN"),
        association_invoice_to_contact=_int(environ, "HUBSPOT_ASSOCIATION_TYPE_ID_INVOICE_TO_CONTACT"),
        association_invoice_to_company=_int(environ, "HUBSPOT_ASSOCIATION_TYPE_ID_INVOICE_TO_COMPANY"),
        association_invoice_to_line_item=_int(
            environ, "HUBSPOT_ASSOCIATION_TYPE_ID_INVOICE_TO_LINE_ITEM", defaults.association_invoice_to_line_item
        ),
        primary_contact_association_type_id=_int(environ, "HUBSPOT_PRIMARY_CONTACT_ASSOCIATION_TYPE_ID"),
        base_url=_env(environ, "HUBSPOT_BASE_URL", defaults.base_url).rstrip("/"),
        timeout_seconds=_float(environ, "HUBSPOT_TIMEOUT_SECONDS", defaults.timeout_seconds),
        membership_object_type=_env(environ, "HUBSPOT_MEMBERSHIP_OBJECT_TYPE_ID", defaults.membership_object_type),
        invoice_object_type=_env(environ, "HUBSPOT_INVOICE_OBJECT_TYPE_ID", defaults.invoice_object_type),
        renewal_date_property=_env(environ, "HUBSPOT_NEXT_RENEWAL_DATE_PROPERTY", defaults.renewal_date_property),
        individual_paid_through_property=_env(
            environ, "HUBSPOT_INDIVIDUAL_PAID_THROUGH_DATE_PROPERTY", defaults.individual_paid_through_property
        ),
        membership_type_property=_env(environ, "HUBSPOT_MEMBERSHIP_TYPE_PROPERTY", defaults.membership_type_property),
        company_dues_property=_env(
            environ, "HUBSPOT_COMPANY_MEMBERSHIP_DUES_PROPERTY", defaults.company_dues_property
        ),
        us_states_property=_env(environ, "HUBSPOT_DISTRIBUTOR_US_STATES_PROPERTY", defaults.us_states_property),
        canadian_provinces_property=_env(
            environ, "HUBSPOT_DISTRIBUTOR_CAN_PROVINCES_PROPERTY", defaults.canadian_provinces_property
        ),
        non_na_territories_property=_env(
            environ, "HUBSPOT_DISTRIBUTOR_NON_NA_TERRITORIES_PROPERTY", defaults.non_na_territories_property
        ),
        manufacturer_level_property=_env(
            environ, "HUBSPOT_MANUFACTURER_MEMBERSHIP_LEVEL_PROPERTY", defaults.manufacturer_level_property
        ),
        invoice_pdf_link_property=_env(
            environ, "HUBSPOT_INVOICE_PDF_LINK_PROPERTY", defaults.invoice_pdf_link_property
        ),
        invoice_status_property=_env(environ, "HUBSPOT_INVOICE_STATUS_PROPERTY", defaults.invoice_status_property),
        individual_label=_env(environ, "MEMBERSHIP_TYPE_INDIVIDUAL", defaults.individual_label),
        distributor_label=_env(environ, "MEMBERSHIP_TYPE_DISTRIBUTOR", defaults.distributor_label),
        manufacturer_label=_env(environ, "MEMBERSHIP_TYPE_MANUFACTURER", defaults.manufacturer_label),
        service_provider_label=_env(environ, "MEMBERSHIP_TYPE_SERVICE_PROVIDER", defaults.service_provider_label),
    )


def load_mail_settings(environ: Mapping[str, str]) -> MailSettings:
    mail = MailSettings(
        api_key=_env(environ, "MAILGUN_API_KEY"),
        domain=_env(environ, "MAILGUN_DOMAIN"),
        sender=_env(environ, "MAILGUN_SENDER_EMAIL"),
        report_recipient=_env(environ, "MAILGUN_REPORT_RECIPIENT_EMAIL"),
        error_recipient=_env(environ, "MAILGUN_ERROR_RECIPIENT_EMAIL"),
        report_enabled=_flag(environ, "ENABLE_REPORT_EMAIL", True),
        error_enabled=_flag(environ, "ENABLE_ERROR_NOTIFICATIONS", True),
        base_url=_env(environ, "MAILGUN_BASE_URL", MAILGUN_BASE_URL).rstrip("/"),
    )
    if mail.report_enabled and not mail.can_send_reports:
        _LOG.warning("Report emails are enabled, but Mailgun configuration is incomplete; reports will not be emailed.")
    if mail.error_enabled and not mail.can_send_errors:
        _LOG.warning("Error notifications are enabled, but Mailgun configuration is incomplete.")
    return mail


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    env = os.environ if environ is None else environ

    pricing = PricingTable(
        distributor_base_fee=_decimal(env, "DISTRIBUTOR_BASE_FEE", "929"),
        distributor_territory_fee=_decimal(env, "DISTRIBUTOR_TERRITORY_FEE", "70"),
        manufacturer_default_fee=_decimal(env, "MANUFACTURER_DEFAULT_FEE", "1500"),
        service_provider_fee=_decimal(env, "SERVICE_PROVIDER_FLAT_FEE", "1250"),
        individual_fee=_decimal(env, "INDIVIDUAL_MEMBERSHIP_FEE", "349"),
        service_provider_product_id=_env(env, "SERVICE_PROVIDER_PRODUCT_ID") or None,
        individual_product_id=_env(env, "INDIVIDUAL_PRODUCT_ID") or None,
    )

    data_dir = Path(_env(env, "INVOICING_DATA_DIR", str(DEFAULT_DATA_DIR)))
    storage = StorageSettings(
        local_dir=Path(_env(env, "INVOICE_STORAGE_DIR", str(data_dir / "storage"))),
        supabase_url=_env(env, "SUPABASE_URL"),
        supabase_key=_env(env, "SUPABASE_SERVICE_KEY"),
        bucket=_env(env, "INVOICE_STORAGE_BUCKET", StorageSettings.bucket),
    )

    day_of_month = _int(env, "INVOICE_GENERATION_DAY_OF_MONTH", 0)
    if not 0 <= day_of_month <= 31:
        raise ConfigError("INVOICE_GENERATION_DAY_OF_MONTH must be between 0 and 31.")
    month_offset = _int(env, "INVOICE_GENERATION_MONTH_OFFSET", 0)
    if month_offset < 0:
        raise ConfigError("INVOICE_GENERATION_MONTH_OFFSET must not be negative.")
    flush_every = _int(env, "RUN_STATE_FLUSH_EVERY", 5)
    if flush_every < 1:
        raise ConfigError("RUN_STATE_FLUSH_EVERY must be at least 1.")

    return Settings(
        hubspot=_load_hubspot(env),
        pricing=pricing,
        mail=load_mail_settings(env),
        storage=storage,
        organization_name=_env(env, "ORGANIZATION_NAME", Settings.organization_name),
        currency=_env(env, "INVOICE_CURRENCY", "USD").upper(),
        due_days=_int(env, "INVOICE_DUE_DAYS", 30),
        month_offset=month_offset,
        day_of_month=day_of_month,
        throttle_seconds=_float(env, "INVOICE_THROTTLE_SECONDS", 1.0),
        state_flush_every=flush_every,
        time_budget_seconds=_float(env, "RUN_TIME_BUDGET_SECONDS", 840.0),
        time_budget_reserve_seconds=_float(env, "RUN_TIME_RESERVE_SECONDS", 60.0),
        run_state_db=Path(_env(env, "RUN_STATE_DB", str(data_dir / "run_state.sqlite3"))),
    )
