from __future__ import annotations

import json
import logging

import pytest

from pm_identity.email import LoggingEmailSender
from pm_identity.logging_config import JsonFormatter, mask_email, sanitize_for_log


@pytest.mark.parametrize(
    ("email", "masked"),
    [
        ("user@example.com", "u***@e***.com"),
        ("a@b.io", "***@b***.io"),
        ("", ""),
        (None, ""),
        ("nodomain", "n***"),
    ],
)
def test_mask_email(email, masked):
    assert mask_email(email) == masked


def test_sanitize_strips_line_breaks():
    assert sanitize_for_log("evil\r\nINFO forged\tentry") == "evilINFO forged entry"


def test_json_formatter_includes_extras():
    record = logging.LogRecord("pm_identity.test", logging.INFO, __file__, 1, "hello %s", ("there",), None)
    record.user_id = "abc"

    entry = json.loads(JsonFormatter().format(record))

    assert entry["message"] == "hello there"
    assert entry["level"] == "INFO"
    assert entry["extra"] == {"user_id": "abc"}


def test_email_sender_never_logs_the_secret(caplog):
    sender = LoggingEmailSender("https://app.example.com/")

    with caplog.at_level(logging.INFO, logger="pm_identity.email"):
        sender.send_password_reset_email("user@example.com", "super-secret-token")

    assert "super-secret-token" not in caplog.text
    assert "user@example.com" not in caplog.text
    assert "u***@e***.com" in caplog.text
