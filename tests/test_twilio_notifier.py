from __future__ import annotations

import asyncio
import base64
import io
import json
import urllib.error
import urllib.parse
import urllib.request

import pytest

from adapters.twilio_notifier import LoggingNotifier, TwilioStudioNotifier
from core.errors import NotificationError


class FakeResponse:
    def __init__(self, body: bytes) -> None:
        self._body = body

    def read(self) -> bytes:
        return self._body

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc) -> None:
        return None


def _notifier() -> TwilioStudioNotifier:
    return TwilioStudioNotifier("AC123", "secret", "FW456", "5511900000000")


def test_build_form() -> None:
    form = _notifier().build_form("5511987654321", "inactive")

    assert form["To"] == "whatsapp:+5511987654321"
    assert form["From"] == "whatsapp:+5511900000000"
    assert json.loads(form["Parameters"]) == {"reason": "inactive", "member_phone": "+5511987654321"}


def test_send_posts_flow_execution(monkeypatch) -> None:
    captured = {}

    def fake_urlopen(request, timeout):
        captured["request"] = request
        captured["timeout"] = timeout
        return FakeResponse(b'{"sid": "FN789"}')

    monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)

    asyncio.run(_notifier().send("5511987654321", "not found"))

    request = captured["request"]
    assert request.full_url == "https://studio.twilio.com/v2/Flows/FW456/Executions"
    assert request.get_method() == "POST"
    expected_auth = "Basic " + base64.b64encode(b"AC123:secret").decode("ascii")
    assert request.get_header("Authorization") == expected_auth
    assert urllib.parse.parse_qs(request.data.decode("utf-8"))["To"] == ["whatsapp:+5511987654321"]
    assert captured["timeout"] == 10


def test_send_raises_on_http_error(monkeypatch) -> None:
    def fake_urlopen(request, timeout):
        raise urllib.error.HTTPError(
            request.full_url, 400, "Bad Request", hdrs=None, fp=io.BytesIO(b'{"message": "invalid To"}')
        )

    monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)

    with pytest.raises(NotificationError, match="400"):
        asyncio.run(_notifier().send("5511987654321", "inactive"))


def test_send_raises_when_unreachable(monkeypatch) -> None:
    def fake_urlopen(request, timeout):
        raise urllib.error.URLError("name resolution failed")

    monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)

    with pytest.raises(NotificationError, match="unreachable"):
        asyncio.run(_notifier().send("5511987654321", "inactive"))


def test_logging_notifier_does_not_raise() -> None:
    asyncio.run(LoggingNotifier().send("5511987654321", "inactive"))
