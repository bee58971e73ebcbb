"""n8n webhook client.

Objective:
    Send signed mailbox change requests to an n8n workflow and verify signed
    callbacks coming back from it.

Wire contract:
    - ``POST <N8N_WEBHOOK_URL>`` with a JSON body
      ``{"subjectId", "upn", "action", "data", "timestamp"}``.
    - Header ``x-signature``: hex HMAC-SHA256 of the exact body bytes sent,
      keyed by ``N8N_SIGNATURE_SECRET``.

High-level call tree:
    - :class:`WebhookDispatcher`
        - :meth:`WebhookDispatcher.send`
            - :meth:`WebhookDispatcher.sign`
        - :meth:`WebhookDispatcher.verify`
            - :meth:`WebhookDispatcher.sign`

Operational notes:
    - Delivery is at-least-once from the caller's point of view: there is no
      retry here, and any failure is raised to the caller.
"""

import hashlib
import hmac
import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

import requests

from .config import Settings
from .errors import ConfigurationError, WebhookError
from .models import WebhookPayload

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-signature"


def compute_signature(body: bytes, secret: str) -> str:
    """Compute the hex HMAC-SHA256 signature of a body.

    Args:
        body: Exact bytes to sign.
        secret: Shared secret.

    Returns:
        str: Hex digest.
    """
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def _as_bytes(body: bytes | str) -> bytes:
    return body.encode("utf-8") if isinstance(body, str) else body


class WebhookDispatcher:
    """
    Posts signed payloads to the n8n webhook.

    Attributes:
        settings: Application settings (webhook URL and secret).
    """

    def __init__(self, settings: Settings) -> None:
        """
        Initialize the dispatcher.

        The secret is not required here so that :meth:`verify` can run (and
        return False) on a process without webhook configuration.

        Args:
            settings: Application settings.
        """
        self.settings = settings

    def sign(self, body: bytes | str) -> str:
        """
        Sign a body with the configured secret.

        Args:
            body: Body bytes (or text, encoded as UTF-8).

        Returns:
            str: Hex HMAC-SHA256 digest.

        Raises:
            ConfigurationError: If no signature secret is configured.
        """
        if not self.settings.n8n_signature_secret:
            raise ConfigurationError("N8N_SIGNATURE_SECRET is not configured")
        return compute_signature(_as_bytes(body), self.settings.n8n_signature_secret)

    def verify(self, body: bytes | str, signature: Optional[str]) -> bool:
        """
        Verify the signature of an incoming n8n callback.

        Args:
            body: Raw request body.
            signature: Hex signature from the ``x-signature`` header.

        Returns:
            bool: True if the signature matches. Always False when no secret
            is configured or no signature was supplied.
        """
        if not self.settings.n8n_signature_secret:
            logger.warning("Cannot verify signature - N8N_SIGNATURE_SECRET not set")
            return False
        if not signature:
            return False

        expected = self.sign(body)
        # compare_digest only accepts ASCII str; compare bytes so any header value yields a bool
        return hmac.compare_digest(
            expected.encode("ascii"), signature.strip().lower().encode("utf-8")
        )

    def send(self, payload: WebhookPayload) -> Any:
        """
        Send a signed payload to the n8n webhook.

        The timestamp is stamped here, the payload is serialized once, and the
        exact bytes that are signed are the bytes posted.

        Args:
            payload: Payload without timestamp.

        Returns:
            Any: Decoded JSON response body (``{}`` when empty).

        Raises:
            ConfigurationError: If the webhook URL or secret is not configured.
            WebhookError: If n8n is unreachable or answers with a non-2xx status.
        """
        if not self.settings.has_webhook_config:
            raise ConfigurationError("n8n webhook URL or signature secret not configured")

        stamped = payload.model_copy(
            update={"timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")}
        )
        body = json.dumps(stamped.model_dump(mode="json", by_alias=True)).encode("utf-8")
        signature = self.sign(body)

        logger.info(
            "Sending request to n8n (action=%s, subject_id=%s)",
            payload.action.value,
            payload.subject_id,
        )

        try:
            response = requests.post(
                self.settings.n8n_webhook_url,
                data=body,
                headers={
                    "Content-Type": "application/json",
                    SIGNATURE_HEADER: signature,
                },
                timeout=self.settings.webhook_timeout_seconds,
            )
        except requests.RequestException as e:
            logger.error(f"Failed to call n8n webhook: {e}")
            raise WebhookError(f"n8n webhook request failed: {e}") from e

        if not response.ok:
            logger.error(f"n8n webhook error: {response.status_code} - {response.text}")
            raise WebhookError(
                f"n8n webhook returned {response.status_code}: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        logger.info(
            "n8n webhook response received (action=%s, status=%s)",
            payload.action.value,
            response.status_code,
        )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise WebhookError(
                "n8n webhook returned a non-JSON body",
                status_code=response.status_code,
                body=response.text,
            ) from e
