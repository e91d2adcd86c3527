from __future__ import annotations

from pymarks._redact import redact_for_log


def test_redact_for_log_redacts_sensitive_keys() -> None:
    payload = {
        "id": "42",
        "apikey": "anon-key",
        "Authorization": "Bearer abc",
        "session": {"user_id": "user-1", "access_token": "tok", "refresh_token": "ref"},
        "password": "pw",
    }

    redacted = redact_for_log(payload)
    assert redacted["id"] == "42"
    assert redacted["apikey"] == "<redacted>"
    assert redacted["Authorization"] == "<redacted>"
    assert redacted["password"] == "<redacted>"
    assert redacted["session"] == {"user_id": "user-1", "access_token": "<redacted>", "refresh_token": "<redacted>"}


def test_redact_for_log_handles_rows_and_bytes() -> None:
    redacted = redact_for_log([{"title": "Docs", "token": "t"}, b"\x00\x01"])
    assert redacted == [{"title": "Docs", "token": "<redacted>"}, "<bytes:2b>"]


def test_redact_for_log_truncates_long_strings() -> None:
    long_value = "x" * 600
    redacted = redact_for_log({"value": long_value}, max_string=10)
    assert redacted["value"].startswith("x" * 10)
    assert "<truncated>" in redacted["value"]
