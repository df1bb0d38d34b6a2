from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum

from .config import Settings
from .crm import Candidates, HubSpotCrm
from .entities import BillingContact, Company, Individual, MembershipEntity
from .errors import InvoicingError
from .guard import ALREADY_PROCESSED, already_processed, should_skip
from .mailer import MailgunMailer
from .pdf import InvoiceDocument, PdfRenderer
from .periods import due_date, period_label, target_renewal_date
from .pricing import resolve_price
from .reporting import EntityOutcome, OutcomeStatus, RunReport, build_report, send_report, store_report
from .run_state import RunState, RunStateStore
from .storage import PDF_CONTENT_TYPE, DryRunObjectStore, ObjectStore, invoice_pdf_key

_LOG = logging.getLogger(__name__)


class RunMode(str, Enum):
    FULL = "full"
    DRY_RUN = "dry_run"
    PDF_TEST = "pdf_test"
    FULL_TEST = "full_test"


@dataclass(frozen=True)
class TriggerOptions:
    dry_run: bool = False
    pdf_test_limit: int | None = None
    full_test_limit: int | None = None
    keep_draft: bool = False
    clear_state: bool = False
    ids: tuple[str, ...] = ()

    @property
    def mode(self) -> RunMode:
        if self.dry_run:
            return RunMode.DRY_RUN
        if self.pdf_test_limit:
            return RunMode.PDF_TEST
        if self.full_test_limit:
            return RunMode.FULL_TEST
        return RunMode.FULL

    @property
    def limit(self) -> int | None:
        return self.pdf_test_limit or self.full_test_limit or None

    @property
    def writes_crm(self) -> bool:
        return self.mode in {RunMode.FULL, RunMode.FULL_TEST}

    @property
    def uses_run_state(self) -> bool:
        return self.mode is RunMode.FULL


@dataclass
class RunSummary:
    report: RunReport
    report_url: str | None = None

    @property
    def processed(self) -> int:
        return len(self.report.succeeded)

    @property
    def failed(self) -> int:
        return len(self.report.failed)

    @property
    def skipped(self) -> int:
        return len(self.report.skipped)

    @property
    def total(self) -> int:
        return self.report.candidates


class Deadline:
    """Wall-clock budget for one invocation.

    ``remaining_millis`` (a Lambda context's ``get_remaining_time_in_millis``)
    takes precedence over ``budget_seconds`` measured with ``clock``.
    """

    def __init__(
        self,
        budget_seconds: float,
        reserve_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        remaining_millis: Callable[[], float] | None = None,
    ) -> None:
        self.budget_seconds = budget_seconds
        self.reserve_seconds = reserve_seconds
        self._clock = clock
        self._started = clock()
        self._remaining_millis = remaining_millis

    def remaining(self) -> float:
        if self._remaining_millis is not None:
            return self._remaining_millis() / 1000
        return self.budget_seconds - (self._clock() - self._started)

    def exhausted(self) -> bool:
        return self.remaining() < self.reserve_seconds


@dataclass
class _Progress:
    state: RunState | None
    flush_every: int
    pending: int = 0
    outcomes: list[EntityOutcome] = field(default_factory=list)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _company_address(company: Company) -> BillingContact:
    attrs = company.attributes
    return BillingContact(
        id=company.company_id,
        address=str(attrs.get("address") or ""),
        city=str(attrs.get("city") or ""),
        state=str(attrs.get("state") or ""),
        zip=str(attrs.get("zip") or ""),
    )


def _individual_contact(individual: Individual) -> BillingContact:
    attrs = individual.attributes
    return BillingContact(
        id=individual.id,
        first_name=individual.first_name,
        last_name=individual.last_name,
        email=individual.email,
        address=str(attrs.get("address") or ""),
        city=str(attrs.get("city") or ""),
        state=str(attrs.get("state") or ""),
        zip=str(attrs.get("zip") or ""),
    )


class InvoiceOrchestrator:
    def __init__(
        self,
        settings: Settings,
        crm: HubSpotCrm,
        store: ObjectStore,
        renderer: PdfRenderer,
        state_store: RunStateStore,
        mailer: MailgunMailer | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.settings = settings
        self.crm = crm
        self.store = store
        self.renderer = renderer
        self.state_store = state_store
        self.mailer = mailer
        self.clock = clock
        self.sleep = sleep
        self.now = now

    def run(self, options: TriggerOptions, *, deadline: Deadline | None = None) -> RunSummary:
        started_at = self.now()
        today = started_at.date()
        target = target_renewal_date(today, self.settings.month_offset, self.settings.day_of_month)
        run_date = target.isoformat()
        mode = options.mode
        log_extra = {"run_date": run_date}
        deadline = deadline or Deadline(
            self.settings.time_budget_seconds,
            self.settings.time_budget_reserve_seconds,
            clock=self.clock,
        )
        store = DryRunObjectStore(self.store) if mode is RunMode.DRY_RUN else self.store
        _LOG.info("Starting %s run for renewal date %s", mode.value, run_date, extra=log_extra)

        if options.clear_state:
            self.state_store.clear(run_date)
        state = self.state_store.load(run_date) if options.uses_run_state else None
        if state is not None:
            state.reset_counters()
        if state is not None and state.processed_ids:
            _LOG.info(
                "Resuming %s: %d memberships already processed%s",
                run_date,
                len(state.processed_ids),
                " (previous run completed)" if state.is_complete else "",
                extra=log_extra,
            )

        candidates = self.crm.fetch_expiring_memberships(target)
        entities, rejected = self._select(candidates, options)
        progress = _Progress(state=state, flush_every=self.settings.state_flush_every)
        for item in rejected:
            progress.outcomes.append(
                EntityOutcome(
                    entity_id=item.id,
                    kind="Company",
                    category="",
                    name=item.name,
                    status=OutcomeStatus.FAILED,
                    stage="retrieve",
                    reason=item.reason,
                )
            )
        total = len(entities) + len(rejected)
        _LOG.info("%d memberships selected for %s", total, run_date, extra=log_extra)

        stopped_early = False
        throttle_next = False
        for entity in entities:
            if throttle_next and self.settings.throttle_seconds > 0:
                self.sleep(self.settings.throttle_seconds)
            if deadline.exhausted():
                stopped_early = True
                _LOG.warning(
                    "Stopping early with %.1fs left; remaining memberships are left for the next run",
                    deadline.remaining(),
                    extra=log_extra,
                )
                break
            outcome = self._process(entity, options, state, store, today, target)
            self._record(progress, entity, outcome)
            throttle_next = outcome.reason != ALREADY_PROCESSED

        if state is not None:
            state.is_complete = not stopped_early
            self.state_store.save(state)

        report = build_report(
            run_date,
            mode.value,
            total,
            progress.outcomes,
            stopped_early=stopped_early,
            generated_at=started_at,
        )
        report_url = None
        if total:
            report_url = self._store_report(store, report)
            send_report(self.mailer, self.settings.mail, report, report_url)
        else:
            _LOG.info("No memberships renewing on %s; nothing to report", run_date, extra=log_extra)

        _LOG.info(
            "Run for %s finished: %d succeeded, %d failed, %d skipped",
            run_date,
            len(report.succeeded),
            len(report.failed),
            len(report.skipped),
            extra=log_extra,
        )
        return RunSummary(report=report, report_url=report_url)

    def _select(self, candidates: Candidates, options: TriggerOptions):
        entities = list(candidates.entities)
        rejected = list(candidates.rejected)
        if options.ids:
            wanted = set(options.ids)
            entities = [entity for entity in entities if entity.id in wanted]
            rejected = [item for item in rejected if item.id in wanted]
        if options.limit:
            entities = entities[: options.limit]
        return entities, rejected

    def _record(self, progress: _Progress, entity: MembershipEntity, outcome: EntityOutcome) -> None:
        progress.outcomes.append(outcome)
        state = progress.state
        if state is None:
            return
        if outcome.status is OutcomeStatus.SUCCEEDED:
            state.succeeded += 1
            state.mark_processed(entity.id)
            progress.pending += 1
        elif outcome.status is OutcomeStatus.FAILED:
            state.failed += 1
        else:
            state.skipped += 1
        if progress.pending >= progress.flush_every:
            self.state_store.save(state)
            progress.pending = 0

    def _store_report(self, store: ObjectStore, report: RunReport) -> str | None:
        try:
            url = store_report(store, report)
        except InvoicingError as exc:
            _LOG.error("Could not store the run report: %s", exc, extra={"run_date": report.run_date})
            return None
        _LOG.info("Report stored at %s", url, extra={"run_date": report.run_date})
        return url

    def _resolve_contact(self, entity: MembershipEntity) -> BillingContact | None:
        if isinstance(entity, Individual):
            return _individual_contact(entity)
        return self.crm.get_primary_contact(entity.company_id)

    def _process(
        self,
        entity: MembershipEntity,
        options: TriggerOptions,
        state: RunState | None,
        store: ObjectStore,
        today: date,
        target: date,
    ) -> EntityOutcome:
        outcome = EntityOutcome(
            entity_id=entity.id,
            kind=entity.kind.value,
            category=entity.category.value if entity.category else entity.category_label,
            name=entity.name,
            status=OutcomeStatus.FAILED,
        )
        log_extra = {"run_date": target.isoformat(), "entity_id": entity.id}
        if already_processed(entity, state, check_run_state=options.uses_run_state):
            outcome.status, outcome.stage, outcome.reason = OutcomeStatus.SKIPPED, "guard", ALREADY_PROCESSED
            _LOG.info("Skipping %s: %s", entity.name, ALREADY_PROCESSED, extra=log_extra)
            return outcome

        stage = "contact"
        try:
            contact = self._resolve_contact(entity)
            if contact is None:
                outcome.stage, outcome.reason = stage, "no primary contact found"
                _LOG.warning("No primary contact found for %s", entity.name, extra=log_extra)
                return outcome
            outcome.contact_id = contact.id

            stage = "guard"
            reason = should_skip(entity, contact.id, state, self.crm, check_run_state=False)
            if reason:
                outcome.status, outcome.stage, outcome.reason = OutcomeStatus.SKIPPED, stage, reason
                _LOG.info("Skipping %s: %s", entity.name, reason, extra=log_extra)
                return outcome

            stage = "pricing"
            price = resolve_price(entity, self.settings.pricing)
            outcome.amount = price.total_amount
            _LOG.info("Priced %s at %s", entity.name, price.total_amount, extra=log_extra)

            stage = "invoice"
            due = due_date(today, self.settings.due_days)
            payment_link = None
            if options.writes_crm:
                company_id = entity.company_id if isinstance(entity, Company) else None
                created = self.crm.create_invoice(
                    contact, price.line_items, company_id=company_id, due=due, keep_draft=options.keep_draft
                )
                invoice_id = created.id
                stage = "payment_link"
                payment_link = self.crm.get_payment_link(invoice_id)
            else:
                prefix = "DRYRUN" if options.mode is RunMode.DRY_RUN else "TEST"
                invoice_id = f"{prefix}-{entity.id}"
            outcome.invoice_id = invoice_id

            stage = "pdf"
            pdf_bytes = self.renderer.render(
                self._document(entity, contact, price, invoice_id, today, due, payment_link, options)
            )

            stage = "storage"
            key = invoice_pdf_key(period_label(target), entity.kind.value, entity.name, entity.id)
            outcome.pdf_url = store.put(key, pdf_bytes, PDF_CONTENT_TYPE)

            if options.writes_crm:
                stage = "pdf_link"
                self.crm.set_invoice_pdf_link(invoice_id, outcome.pdf_url)
                if isinstance(entity, Company):
                    stage = "dues_update"
                    self.crm.update_company_dues(entity.company_id, price.total_amount)
        except InvoicingError as exc:
            outcome.stage, outcome.reason = stage, str(exc)
            _LOG.error("Failed to invoice %s at %s: %s", entity.name, stage, exc, extra=log_extra)
            return outcome

        outcome.status, outcome.stage = OutcomeStatus.SUCCEEDED, "done"
        _LOG.info("Invoiced %s (%s) for %s", entity.name, outcome.invoice_id, outcome.amount, extra=log_extra)
        return outcome

    def _document(
        self,
        entity: MembershipEntity,
        contact: BillingContact,
        price,
        invoice_id: str,
        issued: date,
        due: date,
        payment_link: str | None,
        options: TriggerOptions,
    ) -> InvoiceDocument:
        if isinstance(entity, Company):
            bill_to_name = entity.name
            lines = [f"Attn: {contact.display_name}"] if contact.display_name else []
            lines += contact.address_lines() or _company_address(entity).address_lines()
            label = f"{entity.category_label or entity.category.value} Membership"
        else:
            bill_to_name = contact.display_name
            lines = contact.address_lines()
            label = "Individual Membership"
        notes: tuple[str, ...] = ()
        if not options.writes_crm:
            notes = ("Preview only. This invoice has not been issued.",)
        elif options.keep_draft:
            notes = ("Draft invoice pending review.",)
        return InvoiceDocument(
            invoice_number=invoice_id,
            issue_date=issued,
            due_date=due,
            organization_name=self.settings.organization_name,
            bill_to_name=bill_to_name,
            bill_to_lines=tuple(lines),
            line_items=price.line_items,
            total=price.total_amount,
            currency=self.settings.currency,
            membership_label=label,
            payment_link=payment_link,
            notes=notes,
        )
