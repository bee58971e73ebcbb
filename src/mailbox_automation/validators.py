"""Request validation helpers.

Objective:
    Turn untrusted request data into validated intents before anything reaches
    the execution router. Pydantic validation failures are re-raised as
    :class:`mailbox_automation.errors.ValidationError` with a readable message.

High-level call tree:
    - :func:`parse_oof_intent` -> :class:`OofIntent`
    - :func:`parse_forwarding_intent` -> :class:`ForwardingIntent`
    - :func:`parse_clear_forwarding_intent` -> :class:`ClearForwardingIntent`
    - :func:`parse_execution_mode` -> :class:`ExecutionMode`
    - :func:`validate_external_forwarding`
        - :func:`email_domain`
"""

import logging
from typing import Any, Optional, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .config import ExecutionMode
from .errors import ForwardingNotAllowedError, ValidationError
from .models import ClearForwardingIntent, ForwardingIntent, OofIntent

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def _format_errors(error: PydanticValidationError) -> str:
    """Flatten Pydantic errors into a single message.

    Args:
        error: Pydantic validation error.

    Returns:
        str: ``"field: message"`` items joined by ``"; "``.
    """
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item.get("loc", ()) if p != "__root__")
        message = str(item.get("msg", "invalid value"))
        # Model validators prefix their ValueError with "Value error, "
        message = message.removeprefix("Value error, ")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts)


def _parse(model: type[ModelT], data: Any, label: str) -> ModelT:
    if data is None:
        raise ValidationError(f"{label} is required")
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid {label}: {_format_errors(e)}") from e


def parse_oof_intent(data: Any) -> OofIntent:
    """Validate out-of-office settings.

    A ``scheduled`` status without both schedule bounds is rejected here.

    Args:
        data: Raw settings mapping (Graph field names).

    Returns:
        OofIntent: Validated intent.

    Raises:
        ValidationError: If the settings are malformed.
    """
    return _parse(OofIntent, data, "OOF settings")


def parse_forwarding_intent(data: Any) -> ForwardingIntent:
    """Validate a forwarding rule request.

    Args:
        data: Raw rule mapping (``forwardTo``, ``keepCopy``, ``enabled``).

    Returns:
        ForwardingIntent: Validated intent.

    Raises:
        ValidationError: If the rule is malformed.
    """
    return _parse(ForwardingIntent, data, "forwarding rule")


def parse_clear_forwarding_intent(forward_to: Optional[str]) -> ClearForwardingIntent:
    """Validate a forwarding removal request.

    Args:
        forward_to: Destination address of the rule to remove.

    Returns:
        ClearForwardingIntent: Validated intent.

    Raises:
        ValidationError: If the address is missing or malformed.
    """
    if not forward_to:
        raise ValidationError("forwardTo parameter is required")
    return _parse(ClearForwardingIntent, {"forwardTo": forward_to}, "forwarding target")


def parse_execution_mode(value: Any, default: ExecutionMode) -> ExecutionMode:
    """Resolve the execution mode for a request.

    Args:
        value: Requested mode (``"graph"``, ``"n8n"``) or empty for default.
        default: Process-wide default mode.

    Returns:
        ExecutionMode: Resolved mode.

    Raises:
        ValidationError: If the mode is not recognized.
    """
    if value is None or value == "":
        return default
    try:
        return ExecutionMode(value)
    except ValueError as e:
        allowed = ", ".join(m.value for m in ExecutionMode)
        raise ValidationError(f"Invalid execution mode {value!r}; expected one of: {allowed}") from e


def email_domain(email: str) -> str:
    """Return the lowercased domain part of an address ("" if none)."""
    _, at, domain = email.rpartition("@")
    if not at:
        return ""
    return domain.strip().lower()


def validate_same_domain(email: str, allowed_domain: Optional[str] = None) -> bool:
    """Check that an address belongs to ``allowed_domain``.

    Args:
        email: Address to check.
        allowed_domain: Required domain; validation is skipped when empty.

    Returns:
        bool: True when no domain is required or the domains match.
    """
    if not allowed_domain:
        return True
    return email_domain(email) == allowed_domain.strip().lower()


def validate_external_forwarding(
    forward_to: str, user_email: str, allow_external: bool
) -> None:
    """Enforce the external forwarding policy.

    When external forwarding is disabled, the destination must share the
    user's domain.

    Args:
        forward_to: Forwarding destination.
        user_email: Mailbox owner address.
        allow_external: Policy switch from settings.

    Raises:
        ForwardingNotAllowedError: If the destination is outside the user's
            domain, or the user's address has no domain, while external
            forwarding is disabled.
    """
    if allow_external:
        return

    user_domain = email_domain(user_email)
    if not user_domain:
        logger.warning("Rejected forwarding for a principal without a mail domain (user=%s)", user_email)
        raise ForwardingNotAllowedError(
            "External forwarding is disabled and the user's domain is unknown"
        )
    if not validate_same_domain(forward_to, user_domain):
        logger.warning(
            "Rejected external forwarding target (forward_to=%s, user_domain=%s)",
            forward_to,
            user_domain,
        )
        raise ForwardingNotAllowedError(
            f"External forwarding is disabled. Must forward to @{user_domain}"
        )
