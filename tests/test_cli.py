import base64
import io
import json
from unittest.mock import MagicMock

import pytest

from mailbox_automation import cli
from mailbox_automation.config import ExecutionMode, MailboxAction
from mailbox_automation.errors import NoCredentialError
from mailbox_automation.models import ExecutionOutcome, ForwardingStatus, OofStatus


@pytest.fixture()
def orchestrator(monkeypatch, settings) -> MagicMock:
    """Replace the orchestrator constructed by the CLI."""

    instance = MagicMock()
    monkeypatch.setattr(cli, "MailboxOrchestrator", MagicMock(return_value=instance))
    monkeypatch.setattr(cli, "get_settings", lambda: settings)
    monkeypatch.setattr(cli, "setup_logging", lambda level: None)
    return instance


def test_generate_key_prints_32_byte_key(capsys, monkeypatch) -> None:
    monkeypatch.setattr(cli, "setup_logging", lambda level: None)

    assert cli.main(["generate-key"]) == 0

    key = capsys.readouterr().out.strip()
    assert len(base64.b64decode(key)) == 32


def test_forwarding_status_prints_json(orchestrator, capsys) -> None:
    orchestrator.get_forwarding_status.return_value = ForwardingStatus(has_rule=False)

    assert cli.main(["forwarding", "status", "--user-id", "u1"]) == 0

    assert json.loads(capsys.readouterr().out) == {"hasRule": False}
    orchestrator.get_forwarding_status.assert_called_once_with("u1")


def test_oof_set_builds_scheduled_intent(orchestrator, capsys) -> None:
    orchestrator.set_oof_settings.return_value = ExecutionOutcome(
        action=MailboxAction.SET_OOF,
        mode=ExecutionMode.GRAPH,
        data={"message": "OOF settings updated successfully"},
    )

    exit_code = cli.main(
        [
            "oof",
            "set",
            "--user-id",
            "u1",
            "--email",
            "jane@contoso.com",
            "--status",
            "scheduled",
            "--external",
            "Back Monday",
            "--start",
            "2026-10-20T09:00:00",
            "--end",
            "2026-10-27T17:00:00",
            "--time-zone",
            "Europe/Brussels",
            "--mode",
            "graph",
        ]
    )

    assert exit_code == 0
    user, intent, mode = orchestrator.set_oof_settings.call_args.args
    assert user.user_id == "u1"
    assert intent.status == OofStatus.SCHEDULED
    assert intent.scheduled_end_date_time.time_zone == "Europe/Brussels"
    assert mode == "graph"
    assert json.loads(capsys.readouterr().out) == {"message": "OOF settings updated successfully"}


def test_forwarding_set_flags(orchestrator) -> None:
    orchestrator.set_forwarding.return_value = ExecutionOutcome(
        action=MailboxAction.SET_FORWARDING, mode=ExecutionMode.N8N, data={}
    )

    cli.main(
        [
            "forwarding",
            "set",
            "--user-id",
            "u1",
            "--email",
            "jane@contoso.com",
            "--to",
            "desk@contoso.com",
            "--no-keep-copy",
        ]
    )

    _, intent, mode = orchestrator.set_forwarding.call_args.args
    assert intent.keep_copy is False
    assert intent.enabled is True
    assert mode is None


def test_store_token_reads_stdin(orchestrator, monkeypatch) -> None:
    """The refresh token is read from stdin, not from the command line."""

    monkeypatch.setattr(cli.sys, "stdin", io.StringIO("0.AXoA-refresh\n"))

    assert cli.main(["store-token", "--user-id", "u1"]) == 0

    orchestrator.token_broker.store_refresh_token.assert_called_once_with("u1", "0.AXoA-refresh")


def test_application_errors_exit_with_1(orchestrator, capsys) -> None:
    orchestrator.get_oof_settings.side_effect = NoCredentialError("u1", "microsoft")

    assert cli.main(["oof", "get", "--user-id", "u1"]) == 1

    assert "No refresh token found" in capsys.readouterr().err


def test_invalid_input_exits_with_1(orchestrator, capsys) -> None:
    assert cli.main(["forwarding", "clear", "--user-id", "u1", "--email", "a@b.com", "--to", "nope"]) == 1

    assert "Invalid forwarding target" in capsys.readouterr().err
    orchestrator.clear_forwarding.assert_not_called()
