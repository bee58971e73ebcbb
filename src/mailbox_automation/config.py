"""Application configuration and settings.

Objective:
    Provide a single source of truth for runtime configuration used across the
    application (Azure AD app registration, encryption key, n8n webhook,
    storage backend, execution mode).

Responsibilities:
    - Define the closed set of execution modes (:class:`ExecutionMode`) and
      mailbox actions (:class:`MailboxAction`).
    - Load environment-driven settings via :class:`Settings` (Pydantic
      BaseSettings).

High-level call tree:
    - :func:`get_settings` -> returns :class:`Settings`
    - :class:`Settings`
        - :attr:`Settings.has_azure_credentials`
        - :attr:`Settings.has_webhook_config`

Operational notes:
    - ``Settings`` loads from ``.env`` by default via ``pydantic-settings``.
    - Settings are constructed once at process start and passed explicitly to
      every component constructor. Components never read the environment
      themselves.
"""

from enum import Enum
from pathlib import Path
from typing import Optional
import logging

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Provider key under which Microsoft refresh tokens are stored
MICROSOFT_PROVIDER = "microsoft"


class ExecutionMode(str, Enum):
    """Backend used to apply a mailbox change.

    ``graph`` calls Microsoft Graph directly on behalf of the user.
    ``n8n`` posts a signed webhook and lets the workflow apply the change.
    """

    GRAPH = "graph"
    N8N = "n8n"


class MailboxAction(str, Enum):
    """Mailbox mutations understood by both execution backends.

    The Enum values are the ``action`` strings sent to n8n and stored in the
    audit log.
    """

    SET_OOF = "set-oof"
    SET_FORWARDING = "set-forwarding"
    CLEAR_FORWARDING = "clear-forwarding"


class StoreBackend(str, Enum):
    """Persistence backend for secrets and audit records."""

    FILE = "file"
    AZURE_BLOB = "azure_blob"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    The settings model is flat and human-editable via `.env`. Most fields map
    directly to environment variables (case-insensitive).

    Attributes:
        azure_client_id: Azure AD application client ID.
        azure_client_secret: Azure AD application client secret.
        azure_tenant_id: Azure AD tenant ID.
        azure_redirect_uri: Redirect URI registered for the auth-code flow.
        encryption_key_32b_base64: Base64 encoded 256-bit key for the vault.
        n8n_webhook_url: n8n webhook endpoint.
        n8n_signature_secret: Shared secret for webhook HMAC signatures.
        execution_mode: Default execution mode when a request has none.
        allow_external_forwarding: Allow forwarding outside the user's domain.
        store_backend: Secret and audit persistence backend.
        log_level: Logging level.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Azure AD Configuration
    azure_client_id: str = Field(default="", description="Azure AD application client ID")
    azure_client_secret: Optional[str] = Field(
        default=None, description="Azure AD application client secret (confidential client)"
    )
    azure_tenant_id: str = Field(
        default="organizations", description="Azure AD tenant ID"
    )
    azure_redirect_uri: str = Field(
        default="http://localhost:3000/api/auth/callback/azure-ad",
        description="Redirect URI used when exchanging an authorization code",
    )

    # Credential vault
    encryption_key_32b_base64: Optional[str] = Field(
        default=None,
        description="Base64 encoded 32-byte key used to encrypt refresh tokens at rest",
    )

    # n8n Configuration
    n8n_webhook_url: Optional[str] = Field(default=None, description="n8n webhook URL")
    n8n_signature_secret: Optional[str] = Field(
        default=None, description="Shared secret used to sign n8n webhook payloads"
    )

    # Execution Settings
    execution_mode: ExecutionMode = Field(
        default=ExecutionMode.GRAPH,
        description="Default execution mode when a request does not specify one",
    )
    allow_external_forwarding: bool = Field(
        default=False,
        description="Allow forwarding rules that target another domain than the user's",
    )

    # Persistence
    store_backend: StoreBackend = Field(
        default=StoreBackend.FILE,
        description=(
            "Secret and audit persistence backend. 'file' keeps JSON documents under data_dir. "
            "'azure_blob' stores one blob per document (recommended for Azure Container Apps)."
        ),
    )
    data_dir: Path = Field(
        default=Path.home() / ".mailbox_automation",
        description="Directory used by the file store backend",
    )
    store_blob_account_url: Optional[str] = Field(
        default=None,
        description="Azure Storage account URL, e.g. https://<account>.blob.core.windows.net",
    )
    store_blob_container: Optional[str] = Field(
        default=None,
        description="Azure Blob container holding secrets and audit records",
    )

    # HTTP Settings
    graph_timeout_seconds: float = Field(default=30, gt=0, description="Graph request timeout")
    webhook_timeout_seconds: float = Field(default=30, gt=0, description="n8n request timeout")

    log_level: str = Field(default="INFO", description="Logging level")

    @property
    def authority(self) -> str:
        """Azure AD authority URL derived from the tenant.

        Returns:
            str: Authority URL.
        """
        return f"https://login.microsoftonline.com/{self.azure_tenant_id}"

    @property
    def has_azure_credentials(self) -> bool:
        """Whether the confidential client can be built.

        Returns:
            bool: True if tenant, client id and client secret are all set.
        """
        return bool(self.azure_tenant_id and self.azure_client_id and self.azure_client_secret)

    @property
    def has_webhook_config(self) -> bool:
        """Whether n8n dispatch is configured.

        Returns:
            bool: True if both webhook URL and signature secret are set.
        """
        return bool(self.n8n_webhook_url and self.n8n_signature_secret)


def get_settings() -> Settings:
    """
    Load and return application settings.

    For tests, construct a :class:`Settings` instance directly instead.

    Returns:
        Settings: Application settings instance.

    Raises:
        ValidationError: If environment variables have invalid values.
    """
    return Settings()
