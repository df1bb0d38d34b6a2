"""Trigger entry point shared by the HTTP route, the CLI and Lambda-style schedulers."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from typing import Any

from .config import Settings, load_mail_settings, load_settings
from .crm import HubSpotCrm
from .hubspot import HubSpotClient
from .mailer import MailgunMailer, send_error_notification
from .orchestrator import Deadline, InvoiceOrchestrator, RunSummary, TriggerOptions
from .pdf import PdfRenderer
from .run_state import RunStateStore
from .storage import build_object_store

_LOG = logging.getLogger(__name__)

BOOL_FIELDS = ("dry_run", "keep_draft", "clear_state")
LIMIT_FIELDS = ("pdf_test_limit", "full_test_limit")


class InvalidTrigger(ValueError):
    pass


def _response(status: int, body: dict[str, Any]) -> dict[str, Any]:
    return {"statusCode": status, "body": body}


def _limit(payload: Mapping[str, Any], name: str) -> int | None:
    value = payload.get(name)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidTrigger(f"{name} must be a positive integer.")
    if value <= 0:
        raise InvalidTrigger(f"{name} must be a positive integer.")
    return value


def parse_options(event: Any) -> TriggerOptions:
    """Validate a trigger payload.

    Accepts the options object itself or an API-gateway style event whose
    ``body`` holds the options as a JSON string.
    """
    payload = event if event is not None else {}
    if isinstance(payload, Mapping) and isinstance(payload.get("body"), (str, bytes)):
        try:
            payload = json.loads(payload["body"] or "{}")
        except json.JSONDecodeError as exc:
            raise InvalidTrigger("Invalid JSON body.") from exc
    if not isinstance(payload, Mapping):
        raise InvalidTrigger("Trigger input must be a JSON object.")

    flags: dict[str, bool] = {}
    for name in BOOL_FIELDS:
        value = payload.get(name, False)
        if value is None:
            value = False
        if not isinstance(value, bool):
            raise InvalidTrigger(f"{name} must be true or false.")
        flags[name] = value

    pdf_test_limit = _limit(payload, "pdf_test_limit")
    full_test_limit = _limit(payload, "full_test_limit")
    if pdf_test_limit and full_test_limit:
        raise InvalidTrigger("pdf_test_limit and full_test_limit cannot be combined.")

    raw_ids = payload.get("ids") or []
    if not isinstance(raw_ids, list):
        raise InvalidTrigger("ids must be a list of membership ids.")
    ids: list[str] = []
    for item in raw_ids:
        if isinstance(item, bool) or not isinstance(item, (str, int)):
            raise InvalidTrigger("ids must be a list of membership ids.")
        text = str(item).strip()
        if text:
            ids.append(text)

    return TriggerOptions(
        dry_run=flags["dry_run"],
        pdf_test_limit=pdf_test_limit,
        full_test_limit=full_test_limit,
        keep_draft=flags["keep_draft"],
        clear_state=flags["clear_state"],
        ids=tuple(ids),
    )


def build_orchestrator(settings: Settings, mailer: MailgunMailer | None) -> InvoiceOrchestrator:
    client = HubSpotClient(settings.hubspot)
    return InvoiceOrchestrator(
        settings,
        HubSpotCrm(client, settings.hubspot, currency=settings.currency),
        build_object_store(settings.storage),
        PdfRenderer(),
        RunStateStore(settings.run_state_db),
        mailer,
    )


def _deadline(settings: Settings, context: Any) -> Deadline:
    remaining = getattr(context, "get_remaining_time_in_millis", None)
    return Deadline(
        settings.time_budget_seconds,
        settings.time_budget_reserve_seconds,
        remaining_millis=remaining if callable(remaining) else None,
    )


def _summary_body(summary: RunSummary) -> dict[str, Any]:
    report = summary.report
    if not summary.total:
        message = "No memberships with expiring renewal dates found."
    elif report.stopped_early:
        message = "Membership invoicing stopped early; remaining memberships will be processed on the next run."
    else:
        message = "Membership invoicing completed."
    return {
        "message": message,
        "processed": summary.processed,
        "failed": summary.failed,
        "skipped": summary.skipped,
        "total": summary.total,
        "reportUrl": summary.report_url,
        "runDate": report.run_date,
        "mode": report.mode,
        "stoppedEarly": report.stopped_early,
    }


def handle(event: Any, context: Any = None, *, environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    try:
        options = parse_options(event)
    except InvalidTrigger as exc:
        _LOG.warning("Rejected trigger input: %s", exc)
        return _response(400, {"message": str(exc)})

    env = os.environ if environ is None else environ
    settings: Settings | None = None
    mailer: MailgunMailer | None = None
    try:
        settings = load_settings(env)
        if settings.mail.configured:
            mailer = MailgunMailer(settings.mail)
        orchestrator = build_orchestrator(settings, mailer)
        summary = orchestrator.run(options, deadline=_deadline(settings, context))
    except Exception as exc:  # single run-level error boundary
        _LOG.exception("Critical error in membership invoicing run")
        mail_settings = settings.mail if settings is not None else load_mail_settings(env)
        if mailer is None and mail_settings.configured:
            mailer = MailgunMailer(mail_settings)
        send_error_notification(mailer, mail_settings, exc, {"mode": options.mode.value, "event": event})
        return _response(500, {"message": "Critical error in membership invoicing run.", "error": str(exc)})

    return _response(200, _summary_body(summary))
