import json
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from mailbox_automation.config import ExecutionMode, MailboxAction
from mailbox_automation.errors import (
    ConfigurationError,
    ForwardingNotAllowedError,
    NoCredentialError,
    ProviderError,
)
from mailbox_automation.models import (
    AuditRecord,
    AuditStatus,
    ExecutionOutcome,
    ForwardingStatus,
    UserIdentity,
)
from mailbox_automation.webapp import create_app, get_dispatcher, get_orchestrator
from mailbox_automation.webhook import SIGNATURE_HEADER, WebhookDispatcher, compute_signature

from conftest import WEBHOOK_SECRET

PRINCIPAL = {
    "X-MS-CLIENT-PRINCIPAL-ID": "u1",
    "X-MS-CLIENT-PRINCIPAL-NAME": "jane@contoso.com",
}
USER = UserIdentity(user_id="u1", email="jane@contoso.com")


@pytest.fixture()
def orchestrator() -> MagicMock:
    return MagicMock()


@pytest.fixture()
def client(orchestrator, settings) -> TestClient:
    app = create_app()
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_dispatcher] = lambda: WebhookDispatcher(settings)
    return TestClient(app)


def test_health(client) -> None:
    """Health endpoint returns ok without authentication."""

    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_missing_principal_is_401(client, orchestrator) -> None:
    resp = client.get("/api/forwarding")

    assert resp.status_code == 401
    assert resp.json() == {"success": False, "error": "Authentication required"}
    orchestrator.get_forwarding_status.assert_not_called()


def test_set_forwarding(client, orchestrator) -> None:
    """POST /api/forwarding validates the rule and passes principal and mode."""

    orchestrator.set_forwarding.return_value = ExecutionOutcome(
        action=MailboxAction.SET_FORWARDING,
        mode=ExecutionMode.N8N,
        data={"status": "queued"},
    )

    resp = client.post(
        "/api/forwarding",
        json={"rule": {"forwardTo": "desk@contoso.com", "keepCopy": False}, "mode": "n8n"},
        headers=PRINCIPAL,
    )

    assert resp.status_code == 200
    assert resp.json() == {"success": True, "data": {"status": "queued"}}
    user, intent, mode = orchestrator.set_forwarding.call_args.args
    assert user == USER
    assert intent.forward_to == "desk@contoso.com"
    assert intent.keep_copy is False
    assert mode == "n8n"


def test_set_forwarding_invalid_rule_is_400(client, orchestrator) -> None:
    resp = client.post("/api/forwarding", json={"rule": {"forwardTo": "nope"}}, headers=PRINCIPAL)

    assert resp.status_code == 400
    assert resp.json()["success"] is False
    orchestrator.set_forwarding.assert_not_called()


def test_external_forwarding_is_403(client, orchestrator) -> None:
    orchestrator.set_forwarding.side_effect = ForwardingNotAllowedError(
        "External forwarding is disabled. Must forward to @contoso.com"
    )

    resp = client.post("/api/forwarding", json={"rule": {"forwardTo": "me@gmail.com"}}, headers=PRINCIPAL)

    assert resp.status_code == 403
    assert resp.json() == {
        "success": False,
        "error": "External forwarding is disabled. Must forward to @contoso.com",
    }


def test_no_credential_is_401(client, orchestrator) -> None:
    orchestrator.get_oof_settings.side_effect = NoCredentialError("u1", "microsoft")

    resp = client.get("/api/oof", headers=PRINCIPAL)

    assert resp.status_code == 401
    assert resp.json()["error"] == "No refresh token found. User must re-authenticate."


def test_provider_error_is_500(client, orchestrator) -> None:
    orchestrator.set_oof_settings.side_effect = ProviderError("Microsoft Graph returned 503", status_code=503)

    resp = client.post("/api/oof", json={"settings": {"status": "disabled"}}, headers=PRINCIPAL)

    assert resp.status_code == 500
    assert resp.json() == {"success": False, "error": "Microsoft Graph returned 503"}


def test_scheduled_oof_without_bounds_is_400(client, orchestrator) -> None:
    resp = client.post("/api/oof", json={"settings": {"status": "scheduled"}}, headers=PRINCIPAL)

    assert resp.status_code == 400
    orchestrator.set_oof_settings.assert_not_called()


def test_get_forwarding_status(client, orchestrator) -> None:
    orchestrator.get_forwarding_status.return_value = ForwardingStatus(
        has_rule=True, forward_to="desk@contoso.com", keep_copy=True
    )

    resp = client.get("/api/forwarding", headers=PRINCIPAL)

    assert resp.json() == {
        "success": True,
        "data": {"hasRule": True, "forwardTo": "desk@contoso.com", "keepCopy": True},
    }
    orchestrator.get_forwarding_status.assert_called_once_with("u1")


def test_clear_forwarding_requires_target(client, orchestrator) -> None:
    resp = client.delete("/api/forwarding", headers=PRINCIPAL)

    assert resp.status_code == 400
    assert resp.json()["error"] == "forwardTo parameter is required"


def test_clear_forwarding(client, orchestrator) -> None:
    orchestrator.clear_forwarding.return_value = ExecutionOutcome(
        action=MailboxAction.CLEAR_FORWARDING,
        mode=ExecutionMode.GRAPH,
        data={"message": "Forwarding rule deleted successfully"},
    )

    resp = client.delete("/api/forwarding?forwardTo=desk@contoso.com", headers=PRINCIPAL)

    assert resp.status_code == 200
    user, intent, mode = orchestrator.clear_forwarding.call_args.args
    assert intent.forward_to == "desk@contoso.com"
    assert mode is None


def test_audit_listing(client, orchestrator) -> None:
    orchestrator.list_audit_logs.return_value = [
        AuditRecord(
            user_id="u1",
            user_email="jane@contoso.com",
            action="set-oof",
            mode=ExecutionMode.GRAPH,
            status=AuditStatus.ERROR,
            error="boom",
        )
    ]

    resp = client.get("/api/audit?limit=5", headers=PRINCIPAL)

    assert resp.status_code == 200
    record = resp.json()["data"][0]
    assert record["userId"] == "u1"
    assert record["status"] == "error"
    assert record["error"] == "boom"
    orchestrator.list_audit_logs.assert_called_once_with("u1", 5)


def test_user_search(client, orchestrator) -> None:
    orchestrator.search_users.return_value = [{"value": "a@contoso.com"}]

    resp = client.get("/api/users?search=al", headers=PRINCIPAL)

    assert resp.json() == {"success": True, "data": [{"value": "a@contoso.com"}]}
    orchestrator.search_users.assert_called_once_with("u1", "al")


def test_n8n_callback_with_valid_signature(client) -> None:
    body = json.dumps({"action": "set-oof", "subjectId": "u1", "status": "done"}).encode()

    resp = client.post(
        "/api/webhooks/n8n",
        content=body,
        headers={SIGNATURE_HEADER: compute_signature(body, WEBHOOK_SECRET)},
    )

    assert resp.status_code == 200
    assert resp.json() == {"success": True}


def test_n8n_callback_with_invalid_signature(client) -> None:
    body = b'{"action": "set-oof"}'

    resp = client.post("/api/webhooks/n8n", content=body, headers={SIGNATURE_HEADER: "deadbeef"})

    assert resp.status_code == 401
    assert resp.json() == {"success": False, "error": "Invalid signature"}


def test_n8n_callback_rejects_non_json_body(client) -> None:
    body = b"not json"

    resp = client.post(
        "/api/webhooks/n8n",
        content=body,
        headers={SIGNATURE_HEADER: compute_signature(body, WEBHOOK_SECRET)},
    )

    assert resp.status_code == 400


def test_n8n_callback_with_non_ascii_signature_is_401(client) -> None:
    body = b'{"action": "set-oof"}'

    resp = client.post(
        "/api/webhooks/n8n",
        content=body,
        headers={SIGNATURE_HEADER: "ü".encode("latin-1") * 64},
    )

    assert resp.status_code == 401
    assert resp.json() == {"success": False, "error": "Invalid signature"}


@pytest.mark.parametrize(
    "content",
    [b'["a@contoso.com"]', b'{"rule": ', b"null"],
)
def test_malformed_body_is_400(client, orchestrator, content: bytes) -> None:
    """Bodies FastAPI cannot bind are answered in the usual error shape."""

    resp = client.post(
        "/api/forwarding",
        content=content,
        headers={**PRINCIPAL, "Content-Type": "application/json"},
    )

    assert resp.status_code == 400
    payload = resp.json()
    assert payload["success"] is False
    assert payload["error"].startswith("Invalid request: ")
    orchestrator.set_forwarding.assert_not_called()


@pytest.mark.parametrize("limit", ["0", "501", "many"])
def test_audit_limit_out_of_range_is_400(client, orchestrator, limit: str) -> None:
    resp = client.get("/api/audit", params={"limit": limit}, headers=PRINCIPAL)

    assert resp.status_code == 400
    assert resp.json()["success"] is False
    assert "limit" in resp.json()["error"]
    orchestrator.list_audit_logs.assert_not_called()


def test_unexpected_error_is_500_with_error_body(orchestrator, settings) -> None:
    app = create_app()
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    orchestrator.get_forwarding_status.side_effect = RuntimeError("boom")
    client = TestClient(app, raise_server_exceptions=False)

    resp = client.get("/api/forwarding", headers=PRINCIPAL)

    assert resp.status_code == 500
    assert resp.json() == {"success": False, "error": "Internal server error"}


def test_orchestrator_is_built_at_startup(orchestrator) -> None:
    factory = MagicMock(return_value=orchestrator)
    app = create_app()
    app.dependency_overrides[get_orchestrator] = factory

    with TestClient(app) as client:
        factory.assert_called_once_with()
        assert client.get("/health").status_code == 200


def test_startup_fails_on_configuration_error() -> None:
    """A bad encryption key stops the process before it serves requests."""

    def broken_orchestrator():
        raise ConfigurationError("ENCRYPTION_KEY_32B_BASE64 is not valid base64")

    app = create_app()
    app.dependency_overrides[get_orchestrator] = broken_orchestrator

    with pytest.raises(ConfigurationError):
        with TestClient(app):
            pass
