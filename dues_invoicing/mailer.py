from __future__ import annotations

import base64
import http.client
import json
import logging
import traceback
import urllib.error
import urllib.parse
import urllib.request
from typing import Any

from .config import MailSettings
from .errors import InvoicingError

_LOG = logging.getLogger(__name__)


class MailerError(InvoicingError):
    pass


def _post_form(url: str, fields: dict[str, str], *, api_key: str, timeout: float = 30.0) -> dict[str, Any]:
    credentials = base64.b64encode(f"api:{api_key}".encode("utf-8")).decode("ascii")
    request = urllib.request.Request(
        url=url,
        method="POST",
        headers={
            "Authorization": f"Basic {credentials}",
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
        },
        data=urllib.parse.urlencode(fields).encode("utf-8"),
    )
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            payload = response.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        details = exc.read().decode("utf-8", errors="replace")
        raise MailerError(f"Mailgun request failed ({exc.code}): {details}") from exc
    except urllib.error.URLError as exc:
        raise MailerError(f"Mailgun request error: {exc.reason}") from exc
    except (OSError, http.client.HTTPException, UnicodeDecodeError) as exc:
        raise MailerError(f"Unexpected Mailgun request error: {exc}") from exc

    try:
        parsed = json.loads(payload or "{}")
    except json.JSONDecodeError:
        return {"message": payload}
    return parsed if isinstance(parsed, dict) else {}


class MailgunMailer:
    def __init__(self, settings: MailSettings) -> None:
        self.settings = settings

    def send(self, to: str, subject: str, body: str) -> str | None:
        """Send a plain-text message; returns the Mailgun message id."""
        if not self.settings.configured:
            raise MailerError("Mailgun is not configured.")
        url = f"{self.settings.base_url}/{urllib.parse.quote(self.settings.domain)}/messages"
        result = _post_form(
            url,
            {"from": self.settings.sender, "to": to, "subject": subject, "text": body},
            api_key=self.settings.api_key,
        )
        message_id = result.get("id")
        _LOG.info("Sent %r to %s (%s)", subject, to, message_id or "no id")
        return message_id


def send_error_notification(
    mailer: MailgunMailer | None,
    settings: MailSettings,
    error: BaseException,
    context: dict[str, Any] | None = None,
) -> bool:
    """Email the operator about a run-level failure. Never raises."""
    if mailer is None or not settings.can_send_errors:
        _LOG.info("Error notification not sent; notifications disabled or Mailgun not configured.")
        return False

    lines = [
        "The membership invoicing run failed.",
        "",
        f"Error: {type(error).__name__}: {error}",
    ]
    for key, value in (context or {}).items():
        lines.append(f"{key}: {value}")
    lines += ["", "Traceback:", "".join(traceback.format_exception(type(error), error, error.__traceback__))]

    try:
        mailer.send(settings.error_recipient, "Membership invoicing run failed", "\n".join(lines))
    except InvoicingError as exc:
        _LOG.error("Could not send error notification: %s", exc)
        return False
    return True
