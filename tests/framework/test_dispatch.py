"""Tests for the concrete dispatchers."""

from __future__ import annotations

import io
import json
import smtplib
import urllib.error
import urllib.request
from typing import Any

import pytest
from pydantic import ValidationError

from camp_spine.core.errors import DispatchError
from camp_spine.core.settings import CampSpineSettings
from camp_spine.framework.dispatch import (
    ConsoleDispatcher,
    SmtpDispatcher,
    WebhookDispatcher,
    build_dispatcher,
    render_subject,
    render_text,
)


class TestRendering:
    def test_subject_from_payload(self):
        assert render_subject("winback_1", {"subject": "We miss you at PDX Camps"}) == "We miss you at PDX Camps"

    def test_subject_from_template_id(self):
        assert render_subject("low_availability", {}) == "Low availability"

    def test_text_skips_subject_and_none(self):
        body = render_text("low_availability", {
            "subject": "Hurry",
            "session_name": "Robotics Week",
            "child_name": None,
            "spots_remaining": 1,
        })
        lines = body.splitlines()
        assert lines[0] == "Hurry"
        assert "session name: Robotics Week" in lines
        assert "spots remaining: 1" in lines
        assert "child name" not in body

    def test_text_renders_nested_as_json(self):
        body = render_text("report", {"alerts": [{"severity": "error"}]})
        assert '"severity": "error"' in body


class TestConsoleDispatcher:
    def test_prints_and_numbers_messages(self):
        stream = io.StringIO()
        d = ConsoleDispatcher(stream=stream)

        first = d.send("a@example.com", "winback_1", {"subject": "Hi"})
        second = d.send("b@example.com", "winback_2", {})

        assert (first, second) == ("console_1", "console_2")
        out = stream.getvalue()
        assert "To: a@example.com  [winback_1]" in out
        assert "Winback 2" in out
        assert d.name == "console"


class _FakeSMTP:
    instances: list["_FakeSMTP"] = []
    fail_with: Exception | None = None

    def __init__(self, host: str, port: int, timeout: float = 0) -> None:
        self.host, self.port = host, port
        self.started_tls = False
        self.login_args: tuple[str, str] | None = None
        self.messages: list[Any] = []
        _FakeSMTP.instances.append(self)

    def __enter__(self) -> "_FakeSMTP":
        return self

    def __exit__(self, *exc: Any) -> None:
        return None

    def starttls(self) -> None:
        self.started_tls = True

    def login(self, user: str, password: str) -> None:
        self.login_args = (user, password)

    def send_message(self, msg: Any) -> None:
        if _FakeSMTP.fail_with is not None:
            raise _FakeSMTP.fail_with
        self.messages.append(msg)


@pytest.fixture()
def fake_smtp(monkeypatch):
    _FakeSMTP.instances = []
    _FakeSMTP.fail_with = None
    monkeypatch.setattr(smtplib, "SMTP", _FakeSMTP)
    return _FakeSMTP


class TestSmtpDispatcher:
    def test_sends_plain_text_message(self, fake_smtp):
        d = SmtpDispatcher("mail.local", "hello@pdxcamps.com", smtp_user="u", smtp_password="p")

        message_id = d.send("parent@example.com", "low_availability", {"subject": "Only 1 spot left"})

        server = fake_smtp.instances[0]
        assert (server.host, server.port) == ("mail.local", 587)
        assert server.started_tls
        assert server.login_args == ("u", "p")
        msg = server.messages[0]
        assert msg["To"] == "parent@example.com"
        assert msg["From"] == "hello@pdxcamps.com"
        assert msg["Subject"] == "Only 1 spot left"
        assert message_id == msg["Message-ID"]

    def test_payload_from_email_wins(self, fake_smtp):
        d = SmtpDispatcher("mail.local", "reports@camp-spine.local", use_tls=False)
        d.send("parent@example.com", "winback_1", {"from_email": "hello@bostoncamps.com"})

        server = fake_smtp.instances[0]
        assert not server.started_tls
        assert server.login_args is None
        assert server.messages[0]["From"] == "hello@bostoncamps.com"

    def test_smtp_error_becomes_dispatch_error(self, fake_smtp):
        fake_smtp.fail_with = smtplib.SMTPRecipientsRefused({})
        d = SmtpDispatcher("mail.local", "hello@pdxcamps.com")

        with pytest.raises(DispatchError, match="parent@example.com"):
            d.send("parent@example.com", "winback_1", {})


class _FakeResponse:
    def __init__(self, body: bytes) -> None:
        self._body = body

    def __enter__(self) -> "_FakeResponse":
        return self

    def __exit__(self, *exc: Any) -> None:
        return None

    def read(self) -> bytes:
        return self._body


class TestWebhookDispatcher:
    def test_posts_json_and_uses_response_id(self, monkeypatch):
        captured: dict[str, Any] = {}

        def fake_urlopen(req, timeout=0):
            captured["req"] = req
            return _FakeResponse(b'{"id": "evt_42"}')

        monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)
        d = WebhookDispatcher("https://hooks.example.com/mail", headers={"X-Token": "t"})

        dispatch_id = d.send("parent@example.com", "winback_1", {"brand_name": "PDX Camps"})

        req = captured["req"]
        assert dispatch_id == "evt_42"
        assert req.get_method() == "POST"
        assert req.get_header("X-token") == "t"
        assert json.loads(req.data) == {
            "recipient": "parent@example.com",
            "template_id": "winback_1",
            "payload": {"brand_name": "PDX Camps"},
        }

    def test_generates_id_for_empty_body(self, monkeypatch):
        monkeypatch.setattr(urllib.request, "urlopen", lambda req, timeout=0: _FakeResponse(b""))
        d = WebhookDispatcher("https://hooks.example.com/mail")
        assert d.send("a@example.com", "winback_1", {}).startswith("webhook_")

    def test_url_error_becomes_dispatch_error(self, monkeypatch):
        def boom(req, timeout=0):
            raise urllib.error.URLError("connection refused")

        monkeypatch.setattr(urllib.request, "urlopen", boom)
        d = WebhookDispatcher("https://hooks.example.com/mail")

        with pytest.raises(DispatchError, match="hooks.example.com"):
            d.send("a@example.com", "winback_1", {})


class TestBuildDispatcher:
    def test_console_by_default(self, tmp_path):
        assert isinstance(build_dispatcher(CampSpineSettings(database_path=tmp_path / "x.db")), ConsoleDispatcher)

    def test_smtp(self, tmp_path):
        settings = CampSpineSettings(database_path=tmp_path / "x.db", dispatcher="smtp", smtp_host="mail.local")
        assert isinstance(build_dispatcher(settings), SmtpDispatcher)

    def test_webhook(self, tmp_path):
        settings = CampSpineSettings(
            database_path=tmp_path / "x.db", dispatcher="webhook", webhook_url="https://hooks.example.com",
        )
        assert isinstance(build_dispatcher(settings), WebhookDispatcher)

    def test_webhook_without_url_rejected(self, tmp_path):
        with pytest.raises(ValidationError):
            CampSpineSettings(database_path=tmp_path / "x.db", dispatcher="webhook")
