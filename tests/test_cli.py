import json

import pytest

from dues_invoicing import cli


def test_cli_builds_event_and_reports(monkeypatch, capsys) -> None:
    seen = []

    def fake_handle(event):
        seen.append(event)
        return {"statusCode": 200, "body": {"message": "Membership invoicing completed.", "processed": 2}}

    monkeypatch.setattr(cli, "handle", fake_handle)
    monkeypatch.setattr(cli, "configure_logging", lambda level=None: None)

    exit_code = cli.main(["--dry-run", "--pdf-test-limit", "3", "--ids", "m-1, m-2,"])

    assert exit_code == 0
    assert seen == [
        {"dry_run": True, "keep_draft": False, "clear_state": False, "pdf_test_limit": 3, "ids": ["m-1", "m-2"]}
    ]
    assert json.loads(capsys.readouterr().out)["processed"] == 2


def test_cli_nonzero_exit_on_failure(monkeypatch) -> None:
    monkeypatch.setattr(cli, "handle", lambda event: {"statusCode": 500, "body": {"message": "boom"}})
    monkeypatch.setattr(cli, "configure_logging", lambda level=None: None)

    assert cli.main([]) == 1


def test_cli_limits_are_exclusive() -> None:
    with pytest.raises(SystemExit):
        cli.main(["--pdf-test-limit", "1", "--full-test-limit", "1"])
