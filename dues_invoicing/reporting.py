from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from .config import MailSettings
from .errors import InvoicingError
from .storage import CSV_CONTENT_TYPE, ObjectStore

_LOG = logging.getLogger(__name__)

EMAIL_PREVIEW_LIMIT = 10


class OutcomeStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class EntityOutcome:
    entity_id: str
    kind: str
    category: str
    name: str
    status: OutcomeStatus
    stage: str = ""
    reason: str = ""
    invoice_id: str | None = None
    amount: Decimal | None = None
    contact_id: str | None = None
    pdf_url: str | None = None


@dataclass
class RunReport:
    run_date: str
    mode: str
    generated_at: datetime
    candidates: int
    outcomes: list[EntityOutcome] = field(default_factory=list)
    stopped_early: bool = False

    def _with_status(self, status: OutcomeStatus) -> list[EntityOutcome]:
        return [outcome for outcome in self.outcomes if outcome.status is status]

    @property
    def succeeded(self) -> list[EntityOutcome]:
        return self._with_status(OutcomeStatus.SUCCEEDED)

    @property
    def failed(self) -> list[EntityOutcome]:
        return self._with_status(OutcomeStatus.FAILED)

    @property
    def skipped(self) -> list[EntityOutcome]:
        return self._with_status(OutcomeStatus.SKIPPED)

    @property
    def attempted(self) -> int:
        return len(self.succeeded) + len(self.failed)

    @property
    def total_amount(self) -> Decimal:
        return sum((item.amount or Decimal("0") for item in self.succeeded), Decimal("0.00"))


def build_report(
    run_date: str,
    mode: str,
    candidates: int,
    outcomes: list[EntityOutcome],
    *,
    stopped_early: bool = False,
    generated_at: datetime | None = None,
) -> RunReport:
    return RunReport(
        run_date=run_date,
        mode=mode,
        generated_at=generated_at or datetime.now(timezone.utc),
        candidates=candidates,
        outcomes=list(outcomes),
        stopped_early=stopped_early,
    )


def _amount(value: Decimal | None) -> str:
    return "" if value is None else f"{value:.2f}"


def report_to_csv(report: RunReport) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(["Membership Invoice Generation Report"])
    writer.writerow(["Run Date", report.run_date])
    writer.writerow(["Generated At", report.generated_at.isoformat()])
    writer.writerow(["Mode", report.mode])
    writer.writerow(["Candidates", report.candidates])
    writer.writerow(["Successful Invoices", len(report.succeeded)])
    writer.writerow(["Failed Attempts", len(report.failed)])
    writer.writerow(["Skipped", len(report.skipped)])
    writer.writerow(["Total Invoiced", _amount(report.total_amount)])
    if report.stopped_early:
        writer.writerow(["Stopped Early", "yes; remaining memberships will be picked up by the next run"])
    writer.writerow([])

    writer.writerow(["Successful Invoices"])
    if report.succeeded:
        writer.writerow(["Entity ID", "Type", "Category", "Name", "Invoice ID", "Amount", "Contact ID", "PDF URL"])
        for item in report.succeeded:
            writer.writerow(
                [
                    item.entity_id,
                    item.kind,
                    item.category,
                    item.name,
                    item.invoice_id or "",
                    _amount(item.amount),
                    item.contact_id or "",
                    item.pdf_url or "",
                ]
            )
    else:
        writer.writerow(["No invoices were successfully generated."])
    writer.writerow([])

    writer.writerow(["Failed Attempts"])
    if report.failed:
        writer.writerow(["Entity ID", "Type", "Category", "Name", "Stage", "Reason"])
        for item in report.failed:
            writer.writerow([item.entity_id, item.kind, item.category, item.name, item.stage, item.reason])
    else:
        writer.writerow(["No failed attempts recorded."])
    writer.writerow([])

    writer.writerow(["Skipped"])
    if report.skipped:
        writer.writerow(["Entity ID", "Type", "Category", "Name", "Reason"])
        for item in report.skipped:
            writer.writerow([item.entity_id, item.kind, item.category, item.name, item.reason])
    else:
        writer.writerow(["No memberships were skipped."])
    return buffer.getvalue()


def report_key(now: datetime) -> str:
    stamp = int(now.timestamp() * 1000)
    return f"reports/{now.year:04d}/{now.month:02d}/{now.day:02d}/invoice-summary-{stamp}.csv"


def report_subject(report: RunReport) -> str:
    prefix = "[DRY RUN] " if report.mode == "dry_run" else ""
    return f"{prefix}Membership Invoicing Report - {report.run_date}"


def report_email_body(report: RunReport, report_url: str | None) -> str:
    lines = [
        "Membership Invoicing Report",
        "",
        f"Renewal date: {report.run_date}",
        f"Mode: {report.mode}",
        f"Memberships found: {report.candidates}",
        f"Successful invoices: {len(report.succeeded)}",
        f"Failed invoices: {len(report.failed)}",
        f"Skipped: {len(report.skipped)}",
        f"Total invoiced: {_amount(report.total_amount)}",
    ]
    if report.stopped_early:
        lines.append("The run stopped early to stay within its time budget; the rest will be resumed next run.")
    lines += ["", f"The full report is available at: {report_url or 'not stored'}", "", "Summary of successful invoices:"]

    successes = report.succeeded
    if not successes:
        lines.append("No invoices were successfully generated.")
    for item in successes[:EMAIL_PREVIEW_LIMIT]:
        lines.append(f"- {item.name or item.entity_id}, Invoice ID: {item.invoice_id}, Amount: {_amount(item.amount)}")
    if len(successes) > EMAIL_PREVIEW_LIMIT:
        lines.append(f"...and {len(successes) - EMAIL_PREVIEW_LIMIT} more.")

    if report.failed:
        lines += ["", "Failures:"]
        for item in report.failed[:EMAIL_PREVIEW_LIMIT]:
            lines.append(f"- {item.name or item.entity_id} ({item.stage}): {item.reason}")
        if len(report.failed) > EMAIL_PREVIEW_LIMIT:
            lines.append(f"...and {len(report.failed) - EMAIL_PREVIEW_LIMIT} more.")
    return "\n".join(lines) + "\n"


def store_report(store: ObjectStore, report: RunReport) -> str:
    key = report_key(report.generated_at)
    return store.put(key, report_to_csv(report).encode("utf-8"), CSV_CONTENT_TYPE)


def send_report(mailer, settings: MailSettings, report: RunReport, report_url: str | None) -> bool:
    if mailer is None or not settings.can_send_reports:
        _LOG.info("Report email skipped; disabled or Mailgun not configured.")
        return False
    try:
        mailer.send(settings.report_recipient, report_subject(report), report_email_body(report, report_url))
    except InvoicingError as exc:
        _LOG.error("Failed to send report email: %s", exc)
        return False
    return True
