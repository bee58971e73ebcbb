"""Command-line interface (CLI) entrypoint.

Objective:
    Provide an operator-friendly CLI around
    :class:`mailbox_automation.orchestrator.MailboxOrchestrator`, mainly for
    support tasks and smoke tests against a real tenant.

Responsibilities:
    - Parse arguments (sub-commands, user identity, execution mode).
    - Configure logging (including redaction and library noise filtering).
    - Invoke the orchestrator and print JSON results.

High-level call tree:
    - :func:`main`
        - :func:`build_parser`
        - :func:`mailbox_automation.logging_config.setup_logging`
        - ``generate-key`` -> :func:`generate_encryption_key`
        - otherwise instantiate :class:`MailboxOrchestrator` and dispatch:
            - ``store-token`` -> :meth:`TokenBroker.store_refresh_token`
            - ``oof get|set``
            - ``forwarding status|set|clear``
            - ``audit``
        - :func:`print_json`

Exit codes:
    0 on success, 1 on any error.
"""

import argparse
import json
import logging
import sys
from typing import Any, Optional

from .config import ExecutionMode, get_settings
from .crypto import generate_encryption_key
from .errors import MailboxAutomationError
from .logging_config import setup_logging
from .models import OofStatus, UserIdentity
from .orchestrator import MailboxOrchestrator
from .validators import (
    parse_clear_forwarding_intent,
    parse_forwarding_intent,
    parse_oof_intent,
)

logger = logging.getLogger(__name__)


def print_json(data: Any) -> None:
    """Print a JSON document to stdout.

    Args:
        data: JSON-compatible data.
    """
    print(json.dumps(data, indent=2, default=str))


def _add_user_args(parser: argparse.ArgumentParser, with_email: bool = True) -> None:
    parser.add_argument("--user-id", required=True, help="Azure AD object ID of the user")
    if with_email:
        parser.add_argument("--email", required=True, help="User principal name of the mailbox")


def _add_mode_arg(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--mode",
        choices=[m.value for m in ExecutionMode],
        default=None,
        help="Execution mode (defaults to EXECUTION_MODE)",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser.

    Returns:
        argparse.ArgumentParser: Configured parser.
    """
    parser = argparse.ArgumentParser(
        description="Mailbox Automation - out-of-office and forwarding management",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s generate-key
  %(prog)s store-token --user-id 1234 < refresh_token.txt
  %(prog)s oof set --user-id 1234 --email jane@contoso.com --status alwaysEnabled --internal "Away"
  %(prog)s forwarding set --user-id 1234 --email jane@contoso.com --to desk@contoso.com --mode n8n
  %(prog)s audit --user-id 1234 --limit 10
        """,
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose output")

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("generate-key", help="Print a new ENCRYPTION_KEY_32B_BASE64 value")

    store = commands.add_parser("store-token", help="Encrypt and store a refresh token read from stdin")
    _add_user_args(store, with_email=False)

    oof = commands.add_parser("oof", help="Out-of-office automatic replies")
    oof_commands = oof.add_subparsers(dest="oof_command", required=True)
    oof_get = oof_commands.add_parser("get", help="Show current settings")
    _add_user_args(oof_get, with_email=False)
    oof_set = oof_commands.add_parser("set", help="Update settings")
    _add_user_args(oof_set)
    _add_mode_arg(oof_set)
    oof_set.add_argument("--status", required=True, choices=[s.value for s in OofStatus])
    oof_set.add_argument("--internal", default=None, help="Internal reply message")
    oof_set.add_argument("--external", default=None, help="External reply message")
    oof_set.add_argument("--start", default=None, help="Schedule start, e.g. 2026-10-20T09:00:00")
    oof_set.add_argument("--end", default=None, help="Schedule end, e.g. 2026-10-27T17:00:00")
    oof_set.add_argument("--time-zone", default="UTC", help="Time zone of --start/--end")

    forwarding = commands.add_parser("forwarding", help="Inbox forwarding rule")
    fwd_commands = forwarding.add_subparsers(dest="forwarding_command", required=True)
    fwd_status = fwd_commands.add_parser("status", help="Show current forwarding rule")
    _add_user_args(fwd_status, with_email=False)
    fwd_set = fwd_commands.add_parser("set", help="Create a forwarding rule")
    _add_user_args(fwd_set)
    _add_mode_arg(fwd_set)
    fwd_set.add_argument("--to", required=True, dest="forward_to", help="Destination address")
    fwd_set.add_argument("--no-keep-copy", action="store_true", help="Delete the original message")
    fwd_set.add_argument("--disabled", action="store_true", help="Create the rule disabled")
    fwd_clear = fwd_commands.add_parser("clear", help="Remove a forwarding rule")
    _add_user_args(fwd_clear)
    _add_mode_arg(fwd_clear)
    fwd_clear.add_argument("--to", required=True, dest="forward_to", help="Destination address")

    audit = commands.add_parser("audit", help="Show recent audit records")
    _add_user_args(audit, with_email=False)
    audit.add_argument("--limit", type=int, default=20, help="Maximum number of records")

    return parser


def _oof_settings_from_args(parsed_args: argparse.Namespace) -> dict[str, Any]:
    settings: dict[str, Any] = {"status": parsed_args.status}
    if parsed_args.internal is not None:
        settings["internalReplyMessage"] = parsed_args.internal
    if parsed_args.external is not None:
        settings["externalReplyMessage"] = parsed_args.external
    if parsed_args.start:
        settings["scheduledStartDateTime"] = {"dateTime": parsed_args.start, "timeZone": parsed_args.time_zone}
    if parsed_args.end:
        settings["scheduledEndDateTime"] = {"dateTime": parsed_args.end, "timeZone": parsed_args.time_zone}
    return settings


def run_command(orchestrator: MailboxOrchestrator, parsed_args: argparse.Namespace) -> Any:
    """Dispatch a parsed command to the orchestrator.

    Args:
        orchestrator: Orchestrator instance.
        parsed_args: Parsed arguments (any command except ``generate-key``).

    Returns:
        Any: JSON-compatible result to print.
    """
    command = parsed_args.command

    if command == "store-token":
        refresh_token = sys.stdin.read().strip()
        if not refresh_token:
            raise MailboxAutomationError("No refresh token provided on stdin")
        orchestrator.token_broker.store_refresh_token(parsed_args.user_id, refresh_token)
        return {"stored": True, "userId": parsed_args.user_id}

    if command == "audit":
        records = orchestrator.list_audit_logs(parsed_args.user_id, parsed_args.limit)
        return [r.model_dump(mode="json", by_alias=True) for r in records]

    if command == "oof":
        if parsed_args.oof_command == "get":
            return orchestrator.get_oof_settings(parsed_args.user_id)
        user = UserIdentity(user_id=parsed_args.user_id, email=parsed_args.email)
        intent = parse_oof_intent(_oof_settings_from_args(parsed_args))
        return orchestrator.set_oof_settings(user, intent, parsed_args.mode).data

    if parsed_args.forwarding_command == "status":
        status = orchestrator.get_forwarding_status(parsed_args.user_id)
        return status.model_dump(by_alias=True, exclude_none=True)

    user = UserIdentity(user_id=parsed_args.user_id, email=parsed_args.email)
    if parsed_args.forwarding_command == "set":
        intent = parse_forwarding_intent(
            {
                "forwardTo": parsed_args.forward_to,
                "keepCopy": not parsed_args.no_keep_copy,
                "enabled": not parsed_args.disabled,
            }
        )
        return orchestrator.set_forwarding(user, intent, parsed_args.mode).data

    intent = parse_clear_forwarding_intent(parsed_args.forward_to)
    return orchestrator.clear_forwarding(user, intent, parsed_args.mode).data


def main(args: Optional[list[str]] = None) -> int:
    """
    Main CLI entry point.

    Pass an explicit ``args`` list instead of relying on ``sys.argv`` to
    call it from tests.

    Args:
        args: Command line arguments (uses sys.argv if None).

    Returns:
        int: Exit code (0 for success, 1 for error).
    """
    parsed_args = build_parser().parse_args(args)

    log_level = "DEBUG" if parsed_args.verbose else parsed_args.log_level
    setup_logging(log_level)

    if parsed_args.command == "generate-key":
        print(generate_encryption_key())
        return 0

    try:
        orchestrator = MailboxOrchestrator(settings=get_settings())
        print_json(run_command(orchestrator, parsed_args))
        return 0
    except MailboxAutomationError as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    except Exception as e:
        logger.exception("Fatal error")
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
