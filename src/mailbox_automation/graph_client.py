"""Microsoft Graph API client for mailbox settings and inbox rules.

Objective:
    Provide a thin wrapper around the Microsoft Graph endpoints used by this
    project. This module centralizes HTTP request construction, per-user token
    handling, the retry-once-on-unauthorized policy and Pydantic validation of
    responses.

Responsibilities:
    - Issue authenticated HTTP requests to Graph (via :mod:`requests`).
    - Read and update automatic replies (OOF).
    - Create, find and delete forwarding rules using the display-name protocol
      (``"Auto-forward to <address>"``).
    - Search users of the organization.

High-level call tree:
    - Public API:
        - :meth:`GraphMailboxClient.get_oof_settings`
        - :meth:`GraphMailboxClient.set_oof`
        - :meth:`GraphMailboxClient.list_message_rules` -> :class:`MessageRule`
        - :meth:`GraphMailboxClient.get_forwarding_status` -> :class:`ForwardingStatus`
        - :meth:`GraphMailboxClient.create_forwarding_rule`
        - :meth:`GraphMailboxClient.delete_forwarding_rule`
        - :meth:`GraphMailboxClient.search_users`
    - Internal helpers:
        - :meth:`GraphMailboxClient._execute` (token + bounded 401 retry)
        - :meth:`GraphMailboxClient._request` (HTTP + error mapping)

Graph endpoints used:
    - ``GET /me/mailboxSettings``
    - ``PATCH /me/mailboxSettings``
    - ``GET /me/mailFolders/inbox/messageRules``
    - ``POST /me/mailFolders/inbox/messageRules``
    - ``DELETE /me/mailFolders/inbox/messageRules/{id}``
    - ``GET /users``

Error handling:
    - HTTP 401 triggers one fresh token and one retry of the whole operation.
      A second 401 raises :class:`AuthenticationError`.
    - Any other non-2xx response or transport failure raises
      :class:`ProviderError` immediately.
"""

import logging
from typing import Any, Callable, Optional, TypeVar
from urllib.parse import quote

import requests

from .config import Settings
from .errors import AuthenticationError, ProviderError
from .models import (
    ForwardingIntent,
    ForwardingStatus,
    MessageRule,
    OofIntent,
    forwarding_rule_name,
)
from .token_broker import TokenBroker

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAILBOX_SETTINGS_READ = "https://graph.microsoft.com/MailboxSettings.Read"
MAILBOX_SETTINGS_READ_WRITE = "https://graph.microsoft.com/MailboxSettings.ReadWrite"
MAIL_READ_WRITE = "https://graph.microsoft.com/Mail.ReadWrite"
USER_READ_BASIC_ALL = "https://graph.microsoft.com/User.ReadBasic.All"

MESSAGE_RULES_ENDPOINT = "/me/mailFolders/inbox/messageRules"


class _GraphUnauthorized(Exception):
    """Internal signal for an HTTP 401 from Graph."""


class GraphMailboxClient:
    """
    Client for Microsoft Graph mailbox operations on behalf of a user.

    The client is stateless per request: every operation obtains a token from
    :class:`mailbox_automation.token_broker.TokenBroker` and builds URLs
    relative to :attr:`GRAPH_BASE_URL`.

    Attributes:
        settings: Application settings.
        token_broker: Per-user access token source.
        max_auth_retries: Fresh-token retries after an unauthorized response.
    """

    GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"

    def __init__(
        self, settings: Settings, token_broker: TokenBroker, max_auth_retries: int = 1
    ) -> None:
        """
        Initialize the Graph client.

        Args:
            settings: Application settings.
            token_broker: Token broker.
            max_auth_retries: Retries after a 401 (one by default).
        """
        self.settings = settings
        self.token_broker = token_broker
        self.max_auth_retries = max_auth_retries

    def _request(
        self,
        access_token: str,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        json_data: Optional[dict] = None,
    ) -> dict:
        """Make an authenticated request to Microsoft Graph.

        This helper:
        - Adds the Bearer token.
        - Applies the configured timeout.
        - Maps 401 to an internal retry signal and other errors to
          :class:`ProviderError`.
        - Returns decoded JSON or ``{}`` for empty responses.

        Args:
            access_token: Graph access token.
            method: HTTP method (GET, POST, PATCH, DELETE).
            endpoint: API endpoint path.
            params: Query parameters.
            json_data: JSON body data.

        Returns:
            dict: Response JSON data.

        Raises:
            ProviderError: If the request fails for a reason other than 401,
                or a successful response body is not JSON.
        """
        url = f"{self.GRAPH_BASE_URL}{endpoint}"
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }

        try:
            response = requests.request(
                method=method,
                url=url,
                headers=headers,
                params=params,
                json=json_data,
                timeout=self.settings.graph_timeout_seconds,
            )
        except requests.RequestException as e:
            logger.error(f"Graph request failed: {method} {endpoint}: {e}")
            raise ProviderError(f"Microsoft Graph request failed: {e}") from e

        if response.status_code == 401:
            raise _GraphUnauthorized(response.text)

        if not response.ok:
            logger.error(f"Graph API error: {response.status_code} - {response.text}")
            raise ProviderError(
                f"Microsoft Graph returned {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )

        if response.status_code == 204 or not response.content:
            return {}

        try:
            return response.json()
        except ValueError as e:
            logger.error(f"Graph returned a non-JSON body: {method} {endpoint}")
            raise ProviderError(
                "Microsoft Graph returned a non-JSON body",
                status_code=response.status_code,
                body=response.text,
            ) from e

    def _execute(self, user_id: str, scopes: list[str], operation: Callable[[str], T]) -> T:
        """Run an operation with a fresh token, retrying once on 401.

        The whole ``operation`` is retried, so multi-request operations (list
        then delete) share a single token per attempt.

        Args:
            user_id: User the operation acts for.
            scopes: Scopes required by the operation.
            operation: Callable receiving an access token.

        Returns:
            T: Operation result.

        Raises:
            AuthenticationError: If Graph still answers 401 after the retry,
                or the token broker cannot produce a token.
        """
        attempt = 0
        while True:
            access_token = self.token_broker.get_access_token(user_id, scopes)
            try:
                return operation(access_token)
            except _GraphUnauthorized as e:
                if attempt >= self.max_auth_retries:
                    logger.error("Graph rejected a fresh token (user_id=%s)", user_id)
                    raise AuthenticationError(
                        "Failed to authenticate. Please sign in again."
                    ) from e
                attempt += 1
                logger.warning("Got 401, retrying with fresh token (user_id=%s)", user_id)

    def get_oof_settings(self, user_id: str) -> dict[str, Any]:
        """Get the current automatic replies setting.

        Args:
            user_id: User ID.

        Returns:
            dict[str, Any]: Graph ``automaticRepliesSetting`` object.
        """

        def operation(token: str) -> dict[str, Any]:
            result = self._request(token, "GET", "/me/mailboxSettings")
            return result.get("automaticRepliesSetting") or {}

        return self._execute(user_id, [MAILBOX_SETTINGS_READ], operation)

    def set_oof(self, user_id: str, intent: OofIntent) -> None:
        """Update automatic replies.

        Args:
            user_id: User ID.
            intent: Validated OOF settings.
        """
        body = {"automaticRepliesSetting": intent.to_payload()}

        self._execute(
            user_id,
            [MAILBOX_SETTINGS_READ_WRITE],
            lambda token: self._request(token, "PATCH", "/me/mailboxSettings", json_data=body),
        )
        logger.info("OOF settings updated (user_id=%s, status=%s)", user_id, intent.status.value)

    @staticmethod
    def _parse_rules(response: dict) -> list[MessageRule]:
        rules = []
        for item in response.get("value", []):
            try:
                rules.append(MessageRule.model_validate(item))
            except Exception as e:
                logger.warning(f"Failed to parse message rule: {e}")
                continue
        return rules

    def list_message_rules(self, user_id: str) -> list[MessageRule]:
        """List the inbox message rules of a user.

        Args:
            user_id: User ID.

        Returns:
            list[MessageRule]: Inbox rules.
        """
        return self._execute(
            user_id,
            [MAIL_READ_WRITE],
            lambda token: self._parse_rules(self._request(token, "GET", MESSAGE_RULES_ENDPOINT)),
        )

    def get_forwarding_status(self, user_id: str) -> ForwardingStatus:
        """Reconstruct forwarding state from the user's inbox rules.

        The first rule whose display name starts with ``"Auto-forward to "``
        wins. Lookup failures propagate; only the absence of such a rule
        yields ``has_rule=False``.

        Args:
            user_id: User ID.

        Returns:
            ForwardingStatus: Current forwarding state.
        """
        rules = self.list_message_rules(user_id)
        rule = next((r for r in rules if r.is_forwarding_rule), None)
        if rule is None:
            return ForwardingStatus(has_rule=False)

        recipients = rule.actions.forward_to
        forward_to = recipients[0].email_address.address if recipients else None
        return ForwardingStatus(
            has_rule=True,
            forward_to=forward_to,
            keep_copy=not rule.actions.delete,
        )

    def create_forwarding_rule(self, user_id: str, intent: ForwardingIntent) -> None:
        """Create an inbox rule forwarding every message.

        The rule has an empty condition set (matches all messages), forwards
        and stops processing further rules, and also deletes the original
        when ``keep_copy`` is False.

        Args:
            user_id: User ID.
            intent: Validated forwarding request.
        """
        actions: dict[str, Any] = {
            "forwardTo": [{"emailAddress": {"address": intent.forward_to}}],
            "stopProcessingRules": True,
        }
        if not intent.keep_copy:
            actions["delete"] = True

        rule_body = {
            "displayName": forwarding_rule_name(intent.forward_to),
            "sequence": 1,
            "isEnabled": intent.enabled,
            "conditions": {},
            "actions": actions,
        }

        self._execute(
            user_id,
            [MAIL_READ_WRITE],
            lambda token: self._request(token, "POST", MESSAGE_RULES_ENDPOINT, json_data=rule_body),
        )
        logger.info("Forwarding rule created (user_id=%s, forward_to=%s)", user_id, intent.forward_to)

    def delete_forwarding_rule(self, user_id: str, forward_to: str) -> bool:
        """Delete the forwarding rule targeting ``forward_to``.

        Deleting a rule that does not exist is a no-op.

        Args:
            user_id: User ID.
            forward_to: Destination address of the rule.

        Returns:
            bool: True if a rule was deleted, False if none matched.
        """
        target_name = forwarding_rule_name(forward_to)

        def operation(token: str) -> bool:
            rules = self._parse_rules(self._request(token, "GET", MESSAGE_RULES_ENDPOINT))
            rule = next((r for r in rules if r.display_name == target_name), None)
            if rule is None:
                logger.warning("Forwarding rule not found (user_id=%s, name=%s)", user_id, target_name)
                return False

            safe_rule_id = quote(rule.id, safe="")
            self._request(token, "DELETE", f"{MESSAGE_RULES_ENDPOINT}/{safe_rule_id}")
            logger.info("Forwarding rule deleted (user_id=%s, rule_id=%s)", user_id, rule.id)
            return True

        return self._execute(user_id, [MAIL_READ_WRITE], operation)

    def search_users(self, user_id: str, query: str) -> list[dict[str, str]]:
        """Search users of the organization by name or address prefix.

        Args:
            user_id: User performing the search.
            query: Prefix to match against displayName, mail or UPN.

        Returns:
            list[dict[str, str]]: Up to 10 entries with ``value``, ``label``,
            ``email`` and ``name`` keys.
        """
        escaped = query.replace("'", "''")
        params = {
            "$filter": (
                f"startswith(displayName,'{escaped}') or startswith(mail,'{escaped}') "
                f"or startswith(userPrincipalName,'{escaped}')"
            ),
            "$select": "id,displayName,mail,userPrincipalName",
            "$top": 10,
        }

        response = self._execute(
            user_id,
            [USER_READ_BASIC_ALL],
            lambda token: self._request(token, "GET", "/users", params=params),
        )

        users = []
        for item in response.get("value", []):
            email = item.get("mail") or item.get("userPrincipalName") or ""
            name = item.get("displayName") or email
            users.append({"value": email, "label": f"{name} ({email})", "email": email, "name": name})

        logger.info("User search results (user_id=%s, count=%s)", user_id, len(users))
        return users
