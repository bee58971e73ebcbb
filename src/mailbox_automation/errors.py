"""Error taxonomy shared by every layer.

Each exception carries a human-readable ``message``. The HTTP boundary maps
exceptions to a stable status classification through :func:`http_status_for`.

Propagation rules:
    - :class:`ConfigurationError` and :class:`IntegrityError` are never retried.
    - :class:`AuthenticationError` means "sign in again". The Graph client
      retries a single unauthorized response once before raising it.
    - :class:`AuditError` is internal only and always swallowed.
"""

from typing import Optional


class MailboxAutomationError(Exception):
    """Base class for all application errors.

    Args:
        message: Human-readable description.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(MailboxAutomationError):
    """Missing or malformed secrets, keys or URLs. Fatal."""


class NoCredentialError(MailboxAutomationError):
    """No stored refresh token exists; the user must re-authenticate."""

    def __init__(self, user_id: str, provider: str) -> None:
        super().__init__("No refresh token found. User must re-authenticate.")
        self.user_id = user_id
        self.provider = provider


class IntegrityError(MailboxAutomationError):
    """Ciphertext failed authentication (tampered, corrupted or wrong key)."""


class AuthenticationError(MailboxAutomationError):
    """Token exchange failed or the provider rejected a fresh token."""


class ValidationError(MailboxAutomationError):
    """Malformed intent, rejected before execution."""


class ForwardingNotAllowedError(ValidationError):
    """Forwarding target violates the external forwarding policy."""


class ProviderError(MailboxAutomationError):
    """Microsoft Graph failure other than authentication.

    Args:
        message: Human-readable description.
        status_code: HTTP status returned by Graph, if any.
        body: Raw response body, if any.
    """

    def __init__(
        self, message: str, status_code: Optional[int] = None, body: str = ""
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class WebhookError(MailboxAutomationError):
    """Non-2xx response (or transport failure) from the n8n endpoint.

    Args:
        message: Human-readable description.
        status_code: HTTP status returned by n8n, if any.
        body: Raw response body, if any.
    """

    def __init__(
        self, message: str, status_code: Optional[int] = None, body: str = ""
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class StorageError(MailboxAutomationError):
    """Secret store read or write failure."""


class AuditError(MailboxAutomationError):
    """Audit store failure. Never surfaced to callers."""


def http_status_for(exc: BaseException) -> int:
    """Classify an exception into an HTTP status code.

    Args:
        exc: Exception raised while serving a request.

    Returns:
        int: 401 for authentication problems, 403 for forwarding policy
        violations, 400 for validation errors, 500 otherwise.
    """
    if isinstance(exc, (AuthenticationError, NoCredentialError)):
        return 401
    if isinstance(exc, ForwardingNotAllowedError):
        return 403
    if isinstance(exc, ValidationError):
        return 400
    return 500
