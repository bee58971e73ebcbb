import pytest

from mailbox_automation.config import ExecutionMode
from mailbox_automation.errors import ForwardingNotAllowedError, ValidationError
from mailbox_automation.validators import (
    email_domain,
    parse_clear_forwarding_intent,
    parse_execution_mode,
    parse_forwarding_intent,
    parse_oof_intent,
    validate_external_forwarding,
    validate_same_domain,
)

START = {"dateTime": "2026-10-20T09:00:00", "timeZone": "UTC"}
END = {"dateTime": "2026-10-27T17:00:00", "timeZone": "UTC"}


def test_scheduled_oof_requires_both_bounds() -> None:
    """scheduled without start or end never reaches execution."""

    with pytest.raises(ValidationError) as excinfo:
        parse_oof_intent({"status": "scheduled", "scheduledStartDateTime": START})

    assert "Start and end date/time are required" in excinfo.value.message


def test_scheduled_oof_payload_uses_graph_names() -> None:
    intent = parse_oof_intent(
        {
            "status": "scheduled",
            "externalReplyMessage": "Out until Monday",
            "scheduledStartDateTime": START,
            "scheduledEndDateTime": END,
        }
    )

    assert intent.to_payload() == {
        "status": "scheduled",
        "externalReplyMessage": "Out until Monday",
        "scheduledStartDateTime": START,
        "scheduledEndDateTime": END,
    }


@pytest.mark.parametrize("data", [None, {}, {"status": "sometimes"}])
def test_invalid_oof_settings(data) -> None:
    with pytest.raises(ValidationError):
        parse_oof_intent(data)


def test_forwarding_defaults() -> None:
    intent = parse_forwarding_intent({"forwardTo": "desk@contoso.com"})

    assert intent.keep_copy is True
    assert intent.enabled is True


@pytest.mark.parametrize("data", [None, {}, {"forwardTo": "not-an-address"}])
def test_invalid_forwarding_rule(data) -> None:
    with pytest.raises(ValidationError):
        parse_forwarding_intent(data)


def test_clear_forwarding_requires_target() -> None:
    with pytest.raises(ValidationError) as excinfo:
        parse_clear_forwarding_intent(None)

    assert excinfo.value.message == "forwardTo parameter is required"
    assert parse_clear_forwarding_intent("desk@contoso.com").forward_to == "desk@contoso.com"


def test_parse_execution_mode() -> None:
    assert parse_execution_mode(None, ExecutionMode.N8N) == ExecutionMode.N8N
    assert parse_execution_mode("", ExecutionMode.GRAPH) == ExecutionMode.GRAPH
    assert parse_execution_mode("n8n", ExecutionMode.GRAPH) == ExecutionMode.N8N

    with pytest.raises(ValidationError):
        parse_execution_mode("zapier", ExecutionMode.GRAPH)


def test_domain_helpers() -> None:
    assert email_domain("Jane@Contoso.COM") == "contoso.com"
    assert email_domain("nodomain") == ""
    assert validate_same_domain("a@contoso.com", None) is True
    assert validate_same_domain("a@CONTOSO.com", "contoso.com") is True
    assert validate_same_domain("a@fabrikam.com", "contoso.com") is False


def test_external_forwarding_rejected_when_disabled() -> None:
    """Another domain is refused unless external forwarding is allowed."""

    with pytest.raises(ForwardingNotAllowedError) as excinfo:
        validate_external_forwarding("me@gmail.com", "jane@contoso.com", allow_external=False)

    assert isinstance(excinfo.value, ValidationError)
    assert excinfo.value.message == "External forwarding is disabled. Must forward to @contoso.com"


def test_internal_or_allowed_forwarding_passes() -> None:
    validate_external_forwarding("desk@Contoso.com", "jane@contoso.com", allow_external=False)
    validate_external_forwarding("me@gmail.com", "jane@contoso.com", allow_external=True)


@pytest.mark.parametrize("user_email", ["jane", "jane@", ""])
def test_forwarding_rejected_for_principal_without_domain(user_email: str) -> None:
    """Without a known user domain nothing counts as internal."""

    with pytest.raises(ForwardingNotAllowedError) as excinfo:
        validate_external_forwarding("desk@contoso.com", user_email, allow_external=False)

    assert excinfo.value.message == "External forwarding is disabled and the user's domain is unknown"


def test_principal_without_domain_may_forward_when_external_allowed() -> None:
    validate_external_forwarding("desk@contoso.com", "jane", allow_external=True)
