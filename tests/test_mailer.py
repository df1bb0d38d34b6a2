import http.client
import io
import urllib.parse

import pytest

from dues_invoicing import mailer
from dues_invoicing.config import MailSettings
from dues_invoicing.mailer import MailerError, MailgunMailer, send_error_notification

MAIL = MailSettings(
    api_key="key-123",
    domain="mg.example.com",
    sender="billing@example.com",
    report_recipient="ops@example.com",
    error_recipient="oncall@example.com",
)


def test_send_posts_form_with_basic_auth(monkeypatch) -> None:
    requests = []

    def fake_urlopen(request, timeout=None):
        requests.append(request)
        return io.BytesIO(b'{"id": "<msg-1@mg.example.com>", "message": "Queued."}')

    monkeypatch.setattr(mailer.urllib.request, "urlopen", fake_urlopen)

    message_id = MailgunMailer(MAIL).send("ops@example.com", "Report", "body")

    assert message_id == "<msg-1@mg.example.com>"
    request = requests[0]
    assert request.full_url == "https://api.mailgun.net/v3/mg.example.com/messages"
    assert request.get_header("Authorization") == "Basic YXBpOmtleS0xMjM="
    assert urllib.parse.parse_qs(request.data.decode("utf-8"))["subject"] == ["Report"]


@pytest.mark.parametrize(
    "error",
    [TimeoutError("timed out"), ConnectionResetError("reset"), http.client.IncompleteRead(b"")],
)
def test_transport_failures_become_mailer_errors(monkeypatch, error) -> None:
    def failing_urlopen(request, timeout=None):
        raise error

    monkeypatch.setattr(mailer.urllib.request, "urlopen", failing_urlopen)

    with pytest.raises(MailerError):
        MailgunMailer(MAIL).send("ops@example.com", "Report", "body")


def test_unconfigured_mailer_refuses_to_send() -> None:
    with pytest.raises(MailerError):
        MailgunMailer(MailSettings()).send("ops@example.com", "Report", "body")


def test_error_notification_survives_timeout(monkeypatch, caplog) -> None:
    def slow_urlopen(request, timeout=None):
        raise TimeoutError("timed out")

    monkeypatch.setattr(mailer.urllib.request, "urlopen", slow_urlopen)

    sent = send_error_notification(MailgunMailer(MAIL), MAIL, RuntimeError("boom"), {"mode": "full"})

    assert sent is False
    assert "Could not send error notification" in caplog.text


def test_error_notification_disabled_without_mailer() -> None:
    assert send_error_notification(None, MAIL, RuntimeError("boom")) is False
