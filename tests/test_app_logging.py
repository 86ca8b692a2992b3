from __future__ import annotations

import logging

from app import _RedactingFormatter, _collect_redaction_values


def test_redacting_formatter_masks_secrets() -> None:
    formatter = _RedactingFormatter(["s3cret-token", ""], fmt="%(message)s")
    record = logging.LogRecord("groupwarden", logging.INFO, __file__, 1, "token=%s", ("s3cret-token",), None)

    assert formatter.format(record) == "token=***"


def test_collect_redaction_values_reads_environment(monkeypatch) -> None:
    monkeypatch.setenv("REDIS_URL", "redis://:pw@localhost:6379/0")
    monkeypatch.setenv("TWILIO_AUTH_TOKEN", "tok")
    monkeypatch.delenv("DATABASE_URL", raising=False)

    values = _collect_redaction_values({})

    assert values == ["redis://:pw@localhost:6379/0", "tok"]
    assert _collect_redaction_values({"redact": {"enabled": False}}) == []
