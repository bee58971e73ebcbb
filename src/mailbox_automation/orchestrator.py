"""Component wiring and public mailbox operations.

Objective:
    Compose the core components once per process and expose the operations
    used by the HTTP layer and the CLI:
    1) Validate the policy-level constraints of an intent
    2) Resolve the execution mode (request value or configured default)
    3) Execute through the router (which audits every attempt)
    4) Serve read-only lookups straight from Graph

Responsibilities:
    - Build the credential vault (fails fast on a bad encryption key), the
      stores, token broker, Graph client, webhook dispatcher, audit recorder
      and execution router.
    - Provide an imperative API that can be called from the CLI, the FastAPI
      webapp, or other scripts.

High-level call tree:
    - :class:`MailboxOrchestrator`
        - :meth:`set_oof_settings` -> :meth:`ExecutionRouter.execute`
        - :meth:`set_forwarding`
            - :func:`validate_external_forwarding`
            - :meth:`ExecutionRouter.execute`
        - :meth:`clear_forwarding` -> :meth:`ExecutionRouter.execute`
        - :meth:`get_oof_settings` -> :meth:`GraphMailboxClient.get_oof_settings`
        - :meth:`get_forwarding_status` -> :meth:`GraphMailboxClient.get_forwarding_status`
        - :meth:`list_audit_logs` -> :meth:`AuditRecorder.list`
        - :meth:`search_users` -> :meth:`GraphMailboxClient.search_users`

Operational notes:
    - Read operations always use Graph, regardless of the execution mode.
    - The orchestrator does not hold per-request state.
"""

import logging
from typing import Any, Optional

from .audit import DEFAULT_AUDIT_LIMIT, AuditRecorder
from .config import ExecutionMode, MailboxAction, Settings, get_settings
from .crypto import CredentialVault
from .graph_client import GraphMailboxClient
from .models import (
    AuditRecord,
    ClearForwardingIntent,
    ExecutionOutcome,
    ForwardingIntent,
    ForwardingStatus,
    OofIntent,
    UserIdentity,
)
from .router import ExecutionRouter
from .storage import AuditStore, SecretStore, build_stores
from .token_broker import TokenBroker
from .validators import parse_execution_mode, validate_external_forwarding
from .webhook import WebhookDispatcher

logger = logging.getLogger(__name__)

MIN_SEARCH_LENGTH = 2


class MailboxOrchestrator:
    """
    Orchestrates mailbox changes and lookups.

    This class is "glue" code: it connects the vault, token broker, Graph
    client, webhook dispatcher and audit recorder without embedding transport
    concerns.

    Attributes:
        settings: Application settings.
        vault: Credential vault.
        secret_store: Encrypted secret store.
        audit_store: Audit store.
        token_broker: Token broker.
        graph_client: Graph client.
        dispatcher: Webhook dispatcher.
        recorder: Audit recorder.
        router: Execution router.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        secret_store: Optional[SecretStore] = None,
        audit_store: Optional[AuditStore] = None,
    ) -> None:
        """
        Initialize orchestrator with all components.

        Stores can be injected (tests, alternative backends); otherwise they
        are built from ``settings.store_backend``.

        Args:
            settings: Application settings (loads from env if None).
            secret_store: Optional secret store override.
            audit_store: Optional audit store override.

        Raises:
            ConfigurationError: If the encryption key or store configuration
                is invalid.
        """
        self.settings = settings or get_settings()

        self.vault = CredentialVault(self.settings)
        if secret_store is None or audit_store is None:
            default_secret_store, default_audit_store = build_stores(self.settings)
            secret_store = secret_store or default_secret_store
            audit_store = audit_store or default_audit_store
        self.secret_store = secret_store
        self.audit_store = audit_store

        self.token_broker = TokenBroker(self.settings, self.vault, self.secret_store)
        self.graph_client = GraphMailboxClient(self.settings, self.token_broker)
        self.dispatcher = WebhookDispatcher(self.settings)
        self.recorder = AuditRecorder(self.audit_store)
        self.router = ExecutionRouter(self.graph_client, self.dispatcher, self.recorder)

    def _resolve_mode(self, mode: Any) -> ExecutionMode:
        return parse_execution_mode(mode, self.settings.execution_mode)

    def set_oof_settings(
        self, user: UserIdentity, intent: OofIntent, mode: Any = None
    ) -> ExecutionOutcome:
        """Set out-of-office automatic replies.

        Args:
            user: Acting principal.
            intent: Validated OOF settings.
            mode: Execution mode (configured default if None).

        Returns:
            ExecutionOutcome: Execution result.
        """
        resolved = self._resolve_mode(mode)
        logger.info(
            "Setting OOF (user_id=%s, mode=%s, status=%s)",
            user.user_id,
            resolved.value,
            intent.status.value,
        )
        return self.router.execute(user, MailboxAction.SET_OOF, intent, resolved)

    def get_oof_settings(self, user_id: str) -> dict[str, Any]:
        """Get current automatic replies settings from Graph."""
        return self.graph_client.get_oof_settings(user_id)

    def set_forwarding(
        self, user: UserIdentity, intent: ForwardingIntent, mode: Any = None
    ) -> ExecutionOutcome:
        """Create a forwarding rule.

        Args:
            user: Acting principal.
            intent: Validated forwarding request.
            mode: Execution mode (configured default if None).

        Returns:
            ExecutionOutcome: Execution result.

        Raises:
            ForwardingNotAllowedError: If the destination violates the external
                forwarding policy. Nothing is executed or audited in that case.
        """
        validate_external_forwarding(
            intent.forward_to, user.email, self.settings.allow_external_forwarding
        )
        resolved = self._resolve_mode(mode)
        logger.info(
            "Creating forwarding rule (user_id=%s, mode=%s, forward_to=%s)",
            user.user_id,
            resolved.value,
            intent.forward_to,
        )
        return self.router.execute(user, MailboxAction.SET_FORWARDING, intent, resolved)

    def clear_forwarding(
        self, user: UserIdentity, intent: ClearForwardingIntent, mode: Any = None
    ) -> ExecutionOutcome:
        """Remove the forwarding rule targeting ``intent.forward_to``.

        Args:
            user: Acting principal.
            intent: Validated removal request.
            mode: Execution mode (configured default if None).

        Returns:
            ExecutionOutcome: Execution result.
        """
        resolved = self._resolve_mode(mode)
        logger.info(
            "Deleting forwarding rule (user_id=%s, mode=%s, forward_to=%s)",
            user.user_id,
            resolved.value,
            intent.forward_to,
        )
        return self.router.execute(user, MailboxAction.CLEAR_FORWARDING, intent, resolved)

    def get_forwarding_status(self, user_id: str) -> ForwardingStatus:
        """Get the current forwarding rule status from Graph."""
        return self.graph_client.get_forwarding_status(user_id)

    def list_audit_logs(self, user_id: str, limit: int = DEFAULT_AUDIT_LIMIT) -> list[AuditRecord]:
        """List the user's most recent audit records, newest first."""
        return self.recorder.list(user_id, limit)

    def search_users(self, user_id: str, query: str) -> list[dict[str, str]]:
        """Search organization users; short queries return no results.

        Args:
            user_id: Acting user ID.
            query: Search prefix.

        Returns:
            list[dict[str, str]]: Matching users.
        """
        query = (query or "").strip()
        if len(query) < MIN_SEARCH_LENGTH:
            return []
        return self.graph_client.search_users(user_id, query)
