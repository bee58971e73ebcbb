import logging

from mailbox_automation.logging_config import (
    REDACTED,
    SensitiveDataFilter,
    _LibraryInfoToDebugFilter,
    redact_sensitive,
)


def _record(name: str, msg: str, args=()) -> logging.LogRecord:
    return logging.LogRecord(
        name=name,
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=args,
        exc_info=None,
    )


def test_library_request_info_is_downgraded_to_debug() -> None:
    """Ensure MSAL / urllib3 / Azure SDK chatter is suppressed unless running at DEBUG."""

    record = _record("azure.core.pipeline.policies.http_logging_policy", "Request URL: 'https://x'")

    root_logger = logging.getLogger()
    previous_level = root_logger.level

    try:
        root_logger.setLevel(logging.INFO)
        f = _LibraryInfoToDebugFilter()
        assert f.filter(record) is False
        assert f.filter(_record("mailbox_automation.router", "Executing set-oof")) is True

        root_logger.setLevel(logging.DEBUG)
        assert f.filter(record) is True
    finally:
        root_logger.setLevel(previous_level)


def test_redact_sensitive_nested_values() -> None:
    data = {
        "refresh_token": "0.AXoA",
        "nested": [{"Authorization": "Bearer abc"}, {"client_secret": "s"}],
        "note": "header was Bearer eyJ0eXAi.payload.sig",
        "status": "ok",
    }

    redacted = redact_sensitive(data)

    assert redacted["refresh_token"] == REDACTED
    assert redacted["nested"][0]["Authorization"] == REDACTED
    assert redacted["nested"][1]["client_secret"] == REDACTED
    assert redacted["note"] == f"header was Bearer {REDACTED}"
    assert redacted["status"] == "ok"
    assert data["refresh_token"] == "0.AXoA"


def test_sensitive_data_filter_rewrites_record() -> None:
    """Bearer tokens never reach the formatted log line."""

    record = _record(
        "mailbox_automation.graph_client",
        "Calling Graph with Bearer eyJhbGciOi.abc.def and %s",
        ({"access_token": "at-1", "user": "u1"},),
    )

    assert SensitiveDataFilter().filter(record) is True

    message = record.getMessage()
    assert "eyJhbGciOi" not in message
    assert "at-1" not in message
    assert "u1" in message
