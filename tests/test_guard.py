import pytest

from conftest import FakeCrm, distributor
from dues_invoicing.crm import OPEN_INVOICE_STATUSES, OpenInvoice
from dues_invoicing.guard import ALREADY_PROCESSED, should_skip
from dues_invoicing.run_state import RunState


@pytest.mark.parametrize("status", OPEN_INVOICE_STATUSES)
def test_open_invoice_skips(status: str) -> None:
    crm = FakeCrm()
    crm.open_invoices["contact-1"] = OpenInvoice(id="inv-9", status=status)

    reason = should_skip(distributor(), "contact-1", None, crm, check_run_state=False)

    assert reason == "open invoice inv-9 exists"


def test_no_open_invoice_passes() -> None:
    assert should_skip(distributor(), "contact-1", RunState(run_date="2025-01-31"), FakeCrm(), check_run_state=True) is None


def test_processed_id_skips_only_when_checking_run_state() -> None:
    state = RunState(run_date="2025-01-31")
    state.mark_processed("m-1")

    assert should_skip(distributor("m-1"), "contact-1", state, FakeCrm(), check_run_state=True) == ALREADY_PROCESSED
    assert should_skip(distributor("m-1"), "contact-1", state, FakeCrm(), check_run_state=False) is None


def test_lookup_failure_fails_open(caplog) -> None:
    crm = FakeCrm()
    crm.fail_open_lookup = True

    reason = should_skip(distributor(), "contact-1", None, crm, check_run_state=False)

    assert reason is None
    assert "Open invoice check failed" in caplog.text
