"""Outbound dispatchers.

Concrete implementations of :class:`camp_spine.core.protocols.Dispatcher`.
Each returns a dispatch id on success and raises
:class:`~camp_spine.core.errors.DispatchError` on failure, which the
notifier, report sender and sequence runner already know how to handle.

    ConsoleDispatcher  ── prints to a stream (development, CLI default)
    SmtpDispatcher     ── plain-text email via smtplib
    WebhookDispatcher  ── JSON POST via urllib

Tags:
    camp-spine, framework, dispatch, email, webhook
"""

from __future__ import annotations

import json
import smtplib
import sys
import urllib.error
import urllib.request
import uuid
from abc import ABC, abstractmethod
from email.message import EmailMessage
from typing import Any, TextIO

from camp_spine.core.errors import ConfigError, DispatchError
from camp_spine.core.logging import get_logger
from camp_spine.core.settings import CampSpineSettings

logger = get_logger(__name__)


def render_subject(template_id: str, payload: dict[str, Any]) -> str:
    return str(payload.get("subject") or template_id.replace("_", " ").capitalize())


def render_text(template_id: str, payload: dict[str, Any]) -> str:
    """Plain-text body: one ``key: value`` line per payload field."""
    lines = [render_subject(template_id, payload), ""]
    for key, value in payload.items():
        if key == "subject" or value is None:
            continue
        if isinstance(value, (list, dict)):
            value = json.dumps(value, default=str, indent=2)
        lines.append(f"{key.replace('_', ' ')}: {value}")
    return "\n".join(lines) + "\n"


class BaseDispatcher(ABC):
    """Shared naming and logging for dispatchers."""

    def __init__(self, name: str) -> None:
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    def send(self, recipient: str, template_id: str, payload: dict[str, Any]) -> str:
        dispatch_id = self._send(recipient, template_id, payload)
        logger.debug("dispatched", dispatcher=self._name, template_id=template_id, dispatch_id=dispatch_id)
        return dispatch_id

    @abstractmethod
    def _send(self, recipient: str, template_id: str, payload: dict[str, Any]) -> str:
        ...


class ConsoleDispatcher(BaseDispatcher):
    """Print messages instead of sending them."""

    def __init__(self, name: str = "console", *, stream: TextIO | None = None) -> None:
        super().__init__(name)
        self._stream = stream
        self._count = 0

    def _send(self, recipient: str, template_id: str, payload: dict[str, Any]) -> str:
        self._count += 1
        stream = self._stream or sys.stdout
        print(f"To: {recipient}  [{template_id}]", file=stream)
        print(render_text(template_id, payload), file=stream)
        return f"console_{self._count}"


class SmtpDispatcher(BaseDispatcher):
    """Send plain-text email over SMTP."""

    def __init__(
        self,
        smtp_host: str,
        from_address: str,
        *,
        name: str = "smtp",
        smtp_port: int = 587,
        smtp_user: str | None = None,
        smtp_password: str | None = None,
        use_tls: bool = True,
        timeout: float = 30.0,
    ) -> None:
        super().__init__(name)
        self._smtp_host = smtp_host
        self._smtp_port = smtp_port
        self._smtp_user = smtp_user
        self._smtp_password = smtp_password
        self._from_address = from_address
        self._use_tls = use_tls
        self._timeout = timeout

    def _build_message(self, recipient: str, template_id: str, payload: dict[str, Any]) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = render_subject(template_id, payload)
        msg["From"] = payload.get("from_email") or self._from_address
        msg["To"] = recipient
        msg["Message-ID"] = f"<{uuid.uuid4().hex}@{self._smtp_host}>"
        msg.set_content(render_text(template_id, payload))
        return msg

    def _send(self, recipient: str, template_id: str, payload: dict[str, Any]) -> str:
        msg = self._build_message(recipient, template_id, payload)
        try:
            with smtplib.SMTP(self._smtp_host, self._smtp_port, timeout=self._timeout) as server:
                if self._use_tls:
                    server.starttls()
                if self._smtp_user and self._smtp_password:
                    server.login(self._smtp_user, self._smtp_password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise DispatchError(f"SMTP send to {recipient} failed: {exc}", cause=exc) from exc
        return msg["Message-ID"]


class WebhookDispatcher(BaseDispatcher):
    """POST ``{recipient, template_id, payload}`` as JSON to a URL.

    The dispatch id is the ``id`` field of a JSON response body when
    present, otherwise a generated one.
    """

    def __init__(
        self,
        url: str,
        *,
        name: str = "webhook",
        headers: dict[str, str] | None = None,
        timeout: float = 10.0,
    ) -> None:
        super().__init__(name)
        self._url = url
        self._headers = headers or {}
        self._timeout = timeout

    def _send(self, recipient: str, template_id: str, payload: dict[str, Any]) -> str:
        body = json.dumps(
            {"recipient": recipient, "template_id": template_id, "payload": payload}, default=str,
        ).encode("utf-8")
        headers = {"Content-Type": "application/json", **self._headers}
        req = urllib.request.Request(self._url, data=body, headers=headers, method="POST")

        try:
            with urllib.request.urlopen(req, timeout=self._timeout) as response:
                raw = response.read()
        except urllib.error.URLError as exc:
            raise DispatchError(f"Webhook POST to {self._url} failed: {exc}", cause=exc) from exc

        try:
            data = json.loads(raw) if raw else {}
        except ValueError:
            data = {}
        if isinstance(data, dict) and data.get("id"):
            return str(data["id"])
        return f"webhook_{uuid.uuid4().hex[:12]}"


def build_dispatcher(settings: CampSpineSettings) -> BaseDispatcher:
    """Dispatcher selected by ``settings.dispatcher``."""
    if settings.dispatcher == "smtp":
        return SmtpDispatcher(
            settings.smtp_host,
            settings.report_from_email,
            smtp_port=settings.smtp_port,
            smtp_user=settings.smtp_user,
            smtp_password=settings.smtp_password.get_secret_value() if settings.smtp_password else None,
            use_tls=settings.smtp_use_tls,
        )
    if settings.dispatcher == "webhook":
        if not settings.webhook_url:
            raise ConfigError("webhook_url is required for the webhook dispatcher")
        return WebhookDispatcher(settings.webhook_url)
    return ConsoleDispatcher()
