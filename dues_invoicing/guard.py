from __future__ import annotations

import logging
from typing import Protocol

from .entities import MembershipEntity
from .errors import InvoicingError
from .run_state import RunState

_LOG = logging.getLogger(__name__)

ALREADY_PROCESSED = "already processed this run"


class OpenInvoiceLookup(Protocol):
    def find_open_invoice(self, contact_id: str): ...


def already_processed(entity: MembershipEntity, run_state: RunState | None, *, check_run_state: bool) -> bool:
    return check_run_state and run_state is not None and run_state.was_processed(entity.id)


def should_skip(
    entity: MembershipEntity,
    contact_id: str,
    run_state: RunState | None,
    crm: OpenInvoiceLookup,
    *,
    check_run_state: bool,
) -> str | None:
    """Reason to leave ``entity`` alone this run, or ``None`` to invoice it."""
    if already_processed(entity, run_state, check_run_state=check_run_state):
        return ALREADY_PROCESSED

    try:
        existing = crm.find_open_invoice(contact_id)
    except InvoicingError as exc:
        # A failed lookup must not block billing.
        _LOG.warning(
            "Open invoice check failed for %s (contact %s); continuing: %s",
            entity.name,
            contact_id,
            exc,
            extra={"entity_id": entity.id},
        )
        return None

    if existing is not None:
        return f"open invoice {existing.id} exists"
    return None
