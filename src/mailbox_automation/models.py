"""Pydantic data models used across the application.

Objective:
    Centralize all strongly-typed data structures representing:
    - The acting principal (:class:`UserIdentity`)
    - Validated mailbox intents (OOF and forwarding)
    - Microsoft Graph inbox rules returned by the API
    - Webhook payloads sent to n8n
    - Audit records and stored secrets

Design notes:
    - These models use Pydantic aliases to match Microsoft Graph and n8n field
      names (e.g. ``forwardTo`` -> :attr:`ForwardingIntent.forward_to`).
    - ``model_config = ConfigDict(populate_by_name=True)`` allows constructing
      models with either alias names or pythonic field names.
    - Intents serialize through :meth:`Intent.to_payload`, which yields the
      camelCase body understood by Graph, n8n and the audit log alike.

High-level structure:
    - Principal: :class:`UserIdentity`
    - Intents:
        - :class:`DateTimeTimeZone`
        - :class:`OofIntent`
        - :class:`ForwardingIntent`
        - :class:`ClearForwardingIntent`
    - Graph rule primitives:
        - :class:`EmailAddress`
        - :class:`Recipient`
        - :class:`MessageRuleActions`
        - :class:`MessageRule`
        - :class:`ForwardingStatus`
    - Execution / persistence:
        - :class:`WebhookPayload`
        - :class:`ExecutionOutcome`
        - :class:`AuditRecord`
        - :class:`SecretRecord`
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from .config import ExecutionMode, MailboxAction

# Display-name prefix identifying forwarding rules managed by this app
FORWARDING_RULE_PREFIX = "Auto-forward to "


def forwarding_rule_name(forward_to: str) -> str:
    """Build the deterministic display name for a forwarding rule.

    The name is the only link between a forwarding intent and the live Graph
    rule; no local mapping table is kept.

    Args:
        forward_to: Destination address.

    Returns:
        str: Rule display name.
    """
    return f"{FORWARDING_RULE_PREFIX}{forward_to}"


class UserIdentity(BaseModel):
    """Authenticated principal performing a request.

    Supplied by the authentication layer and immutable for the lifetime of a
    request.
    """

    user_id: str = Field(alias="userId", min_length=1)
    email: str = Field(min_length=1)

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class Intent(BaseModel):
    """Base class for validated mailbox intents."""

    model_config = ConfigDict(populate_by_name=True)

    def to_payload(self) -> dict[str, Any]:
        """Serialize the intent using its wire (alias) names.

        Returns:
            dict[str, Any]: JSON-compatible payload without unset optionals.
        """
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class OofStatus(str, Enum):
    """Graph ``automaticRepliesStatus`` values."""

    DISABLED = "disabled"
    ALWAYS_ENABLED = "alwaysEnabled"
    SCHEDULED = "scheduled"


class DateTimeTimeZone(BaseModel):
    """Graph ``dateTimeTimeZone`` complex type.

    Attributes:
        date_time: ISO 8601 local date/time, e.g. ``2026-10-20T09:00:00``.
        time_zone: Time zone name, e.g. ``Europe/Brussels`` or ``UTC``.
    """

    date_time: str = Field(alias="dateTime", min_length=1)
    time_zone: str = Field(alias="timeZone", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class OofIntent(Intent):
    """
    Out-of-office automatic reply settings.

    The alias form is exactly Graph's ``automaticRepliesSetting`` object.

    Attributes:
        status: Reply status.
        internal_reply_message: Reply sent inside the organization.
        external_reply_message: Reply sent to external senders.
        scheduled_start_date_time: Schedule start (required when scheduled).
        scheduled_end_date_time: Schedule end (required when scheduled).
    """

    status: OofStatus
    internal_reply_message: Optional[str] = Field(default=None, alias="internalReplyMessage")
    external_reply_message: Optional[str] = Field(default=None, alias="externalReplyMessage")
    scheduled_start_date_time: Optional[DateTimeTimeZone] = Field(
        default=None, alias="scheduledStartDateTime"
    )
    scheduled_end_date_time: Optional[DateTimeTimeZone] = Field(
        default=None, alias="scheduledEndDateTime"
    )

    @model_validator(mode="after")
    def _require_schedule_bounds(self) -> "OofIntent":
        if self.status == OofStatus.SCHEDULED and not (
            self.scheduled_start_date_time and self.scheduled_end_date_time
        ):
            raise ValueError("Start and end date/time are required for scheduled status")
        return self


class ForwardingIntent(Intent):
    """Inbox forwarding rule request.

    Attributes:
        forward_to: Destination address.
        keep_copy: Keep the original message in the inbox.
        enabled: Whether the rule is active once created.
    """

    forward_to: EmailStr = Field(alias="forwardTo")
    keep_copy: bool = Field(default=True, alias="keepCopy")
    enabled: bool = True


class ClearForwardingIntent(Intent):
    """Request to remove the forwarding rule targeting ``forward_to``."""

    forward_to: EmailStr = Field(alias="forwardTo")


class EmailAddress(BaseModel):
    """Email address with name and address.

    This corresponds to the nested Graph structure:
    ``{"name": "...", "address": "..."}``.
    """

    name: Optional[str] = None
    address: str = ""


class Recipient(BaseModel):
    """Graph recipient wrapper around ``emailAddress``."""

    email_address: EmailAddress = Field(alias="emailAddress")

    model_config = ConfigDict(populate_by_name=True)


class MessageRuleActions(BaseModel):
    """Subset of Graph ``messageRuleActions`` used by forwarding rules."""

    forward_to: list[Recipient] = Field(default_factory=list, alias="forwardTo")
    delete: Optional[bool] = None
    stop_processing_rules: Optional[bool] = Field(default=None, alias="stopProcessingRules")

    model_config = ConfigDict(populate_by_name=True)


class MessageRule(BaseModel):
    """
    Inbox message rule from Microsoft Graph.

    Attributes:
        id: Rule ID.
        display_name: Rule display name.
        sequence: Execution order.
        is_enabled: Whether the rule is active.
        actions: Rule actions.
    """

    id: str
    display_name: str = Field(default="", alias="displayName")
    sequence: Optional[int] = None
    is_enabled: bool = Field(default=True, alias="isEnabled")
    actions: MessageRuleActions = Field(default_factory=MessageRuleActions)

    model_config = ConfigDict(populate_by_name=True)

    @property
    def is_forwarding_rule(self) -> bool:
        """Whether this rule was created by the forwarding protocol.

        Returns:
            bool: True when the display name carries the forwarding prefix.
        """
        return self.display_name.startswith(FORWARDING_RULE_PREFIX)


class ForwardingStatus(BaseModel):
    """Forwarding state reconstructed from the user's inbox rules."""

    has_rule: bool = Field(alias="hasRule")
    forward_to: Optional[str] = Field(default=None, alias="forwardTo")
    keep_copy: Optional[bool] = Field(default=None, alias="keepCopy")

    model_config = ConfigDict(populate_by_name=True)


class WebhookPayload(BaseModel):
    """
    Payload posted to the n8n webhook.

    ``timestamp`` is assigned by the dispatcher at send time, never earlier.

    Attributes:
        subject_id: User ID the change applies to.
        upn: User principal name (email) of the mailbox.
        action: Requested mailbox action.
        data: Serialized intent.
        timestamp: ISO 8601 UTC send time.
    """

    subject_id: str = Field(alias="subjectId")
    upn: str
    action: MailboxAction
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class ExecutionOutcome(BaseModel):
    """Uniform result of a successful execution in either mode."""

    action: MailboxAction
    mode: ExecutionMode
    data: Any = None


class AuditStatus(str, Enum):
    """Outcome recorded on an audit entry."""

    SUCCESS = "success"
    ERROR = "error"
    PENDING = "pending"


class AuditRecord(BaseModel):
    """
    Append-only record of one execution attempt.

    Attributes:
        user_id: Acting user ID.
        user_email: Acting user email.
        action: Mailbox action name.
        mode: Execution mode used.
        status: Attempt outcome.
        payload: JSON-serialized intent.
        response_data: JSON-serialized result (success only).
        error: Error message (failure only).
        created_at: Server-assigned creation time.
    """

    user_id: str = Field(alias="userId")
    user_email: str = Field(alias="userEmail")
    action: str
    mode: ExecutionMode
    status: AuditStatus
    payload: Optional[str] = None
    response_data: Optional[str] = Field(default=None, alias="responseData")
    error: Optional[str] = None
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")

    model_config = ConfigDict(populate_by_name=True)


class SecretRecord(BaseModel):
    """Encrypted per-user, per-provider secret (a refresh token)."""

    user_id: str = Field(alias="userId")
    provider: str
    encrypted_value: str = Field(alias="encryptedValue")
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)
