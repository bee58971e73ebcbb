"""Dual-mode execution with unconditional auditing.

Objective:
    Apply a validated mailbox intent through one of two closed backends and
    record exactly one audit entry per attempt:

    ``execute`` -> {graph | n8n} -> audit(success) -> return
                                 \\-> audit(error)   -> re-raise original error

High-level call tree:
    - :meth:`ExecutionRouter.execute`
        - :meth:`ExecutionRouter._run_graph`
            - :meth:`GraphMailboxClient.set_oof`
            - :meth:`GraphMailboxClient.create_forwarding_rule`
            - :meth:`GraphMailboxClient.delete_forwarding_rule`
        - :meth:`ExecutionRouter._run_n8n`
            - :meth:`WebhookDispatcher.send`
        - :meth:`ExecutionRouter._audit`
            - :meth:`AuditRecorder.record`

Operational notes:
    - There is no retry here. Token retries happen inside the Graph client.
    - The audit write happens before the result is returned or the error is
      re-raised; an audit failure never replaces or hides the real outcome.
"""

import json
import logging
from typing import Any, Callable, Optional

from .audit import AuditRecorder
from .config import ExecutionMode, MailboxAction
from .graph_client import GraphMailboxClient
from .models import (
    AuditRecord,
    AuditStatus,
    ClearForwardingIntent,
    ExecutionOutcome,
    ForwardingIntent,
    Intent,
    OofIntent,
    UserIdentity,
    WebhookPayload,
)
from .webhook import WebhookDispatcher

logger = logging.getLogger(__name__)

SUCCESS_MESSAGES = {
    MailboxAction.SET_OOF: "OOF settings updated successfully",
    MailboxAction.SET_FORWARDING: "Forwarding rule created successfully",
    MailboxAction.CLEAR_FORWARDING: "Forwarding rule deleted successfully",
}

INTENT_TYPES: dict[MailboxAction, type[Intent]] = {
    MailboxAction.SET_OOF: OofIntent,
    MailboxAction.SET_FORWARDING: ForwardingIntent,
    MailboxAction.CLEAR_FORWARDING: ClearForwardingIntent,
}


class ExecutionRouter:
    """
    Routes intents to Graph or n8n and audits every attempt.

    Attributes:
        graph_client: Direct Graph backend.
        dispatcher: n8n webhook backend.
        recorder: Audit recorder.
    """

    def __init__(
        self,
        graph_client: GraphMailboxClient,
        dispatcher: WebhookDispatcher,
        recorder: AuditRecorder,
    ) -> None:
        self.graph_client = graph_client
        self.dispatcher = dispatcher
        self.recorder = recorder
        self._strategies: dict[ExecutionMode, Callable[[UserIdentity, MailboxAction, Intent], Any]] = {
            ExecutionMode.GRAPH: self._run_graph,
            ExecutionMode.N8N: self._run_n8n,
        }

    def _run_graph(self, user: UserIdentity, action: MailboxAction, intent: Intent) -> dict[str, str]:
        """Apply the intent directly through Microsoft Graph.

        Returns:
            dict[str, str]: ``{"message": ...}``.
        """
        if action == MailboxAction.SET_OOF:
            self.graph_client.set_oof(user.user_id, intent)
        elif action == MailboxAction.SET_FORWARDING:
            self.graph_client.create_forwarding_rule(user.user_id, intent)
        else:
            self.graph_client.delete_forwarding_rule(user.user_id, intent.forward_to)
        return {"message": SUCCESS_MESSAGES[action]}

    def _run_n8n(self, user: UserIdentity, action: MailboxAction, intent: Intent) -> Any:
        """Hand the intent to n8n.

        Returns:
            Any: Decoded n8n response body.
        """
        payload = WebhookPayload(
            subject_id=user.user_id,
            upn=user.email,
            action=action,
            data=intent.to_payload(),
        )
        return self.dispatcher.send(payload)

    def _audit(
        self,
        user: UserIdentity,
        action: MailboxAction,
        mode: ExecutionMode,
        status: AuditStatus,
        payload: str,
        response_data: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        entry = AuditRecord(
            user_id=user.user_id,
            user_email=user.email,
            action=action.value,
            mode=mode,
            status=status,
            payload=payload,
            response_data=response_data,
            error=error,
        )
        try:
            self.recorder.record(entry)
        except Exception as e:
            logger.error("Audit recorder failed (action=%s, status=%s): %s", action.value, status.value, e)

    def execute(
        self,
        user: UserIdentity,
        action: MailboxAction,
        intent: Intent,
        mode: ExecutionMode,
    ) -> ExecutionOutcome:
        """
        Execute one mailbox change.

        Args:
            user: Acting principal.
            action: Mailbox action.
            intent: Validated intent matching ``action``.
            mode: Backend to use.

        Returns:
            ExecutionOutcome: ``{"message"}`` data for graph mode, the n8n
            response body for n8n mode.

        Raises:
            TypeError: If ``intent`` does not match ``action``.
            Exception: Whatever the backend raised, after it was audited.
        """
        expected = INTENT_TYPES[action]
        if not isinstance(intent, expected):
            raise TypeError(f"{action.value} expects {expected.__name__}, got {type(intent).__name__}")

        payload = json.dumps(intent.to_payload())
        strategy = self._strategies[mode]

        logger.info("Executing %s (user_id=%s, mode=%s)", action.value, user.user_id, mode.value)

        try:
            result = strategy(user, action, intent)
        except Exception as e:
            self._audit(
                user,
                action,
                mode,
                AuditStatus.ERROR,
                payload,
                error=str(e) or "Execution failed",
            )
            raise

        self._audit(
            user,
            action,
            mode,
            AuditStatus.SUCCESS,
            payload,
            response_data=json.dumps(result, default=str),
        )
        return ExecutionOutcome(action=action, mode=mode, data=result)
