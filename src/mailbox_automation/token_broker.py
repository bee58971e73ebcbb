"""Per-user access tokens for Microsoft Graph.

Objective:
    Exchange a user's stored refresh token for a short-lived Graph access
    token, on behalf of that user, without any interactive step.

Responsibilities:
    - Build an MSAL ``ConfidentialClientApplication`` per exchange, with a
      throwaway token cache, so no user's tokens outlive the call.
    - Load and decrypt the user's refresh token from the secret store.
    - Exchange it for an access token scoped to the caller's scopes.
    - Persist a rotated refresh token (re-encrypted) before returning.
    - Store refresh tokens obtained at sign-in.

High-level call tree:
    - :class:`TokenBroker`
        - :meth:`TokenBroker.get_access_token`
            - :meth:`SecretStore.get`
            - :meth:`CredentialVault.decrypt`
            - :meth:`TokenBroker._build_app`
            - :meth:`TokenBroker.store_refresh_token` (on rotation)
        - :meth:`TokenBroker.exchange_code_for_tokens`

Operational notes:
    - Failures from Azure AD (invalid grant, network errors) surface as
      :class:`AuthenticationError`: the user must sign in again. There is no
      retry at this layer.
    - Concurrent rotations for the same user are not synchronized; the last
      writer wins on the stored secret.
"""

import logging
from typing import Any, Optional

import msal

from .config import MICROSOFT_PROVIDER, Settings
from .crypto import CredentialVault
from .errors import AuthenticationError, ConfigurationError, NoCredentialError
from .storage import SecretStore

logger = logging.getLogger(__name__)


class TokenBroker:
    """
    Exchanges stored refresh tokens for Graph access tokens using MSAL.

    Attributes:
        settings: Application settings containing Azure AD credentials.
        vault: Credential vault used to decrypt/encrypt refresh tokens.
        secret_store: Store holding encrypted refresh tokens.
        provider: Secret store provider key.
        _http_cache: Authority metadata shared by the per-exchange MSAL apps.
    """

    def __init__(
        self,
        settings: Settings,
        vault: CredentialVault,
        secret_store: SecretStore,
        provider: str = MICROSOFT_PROVIDER,
    ) -> None:
        """
        Initialize the broker.

        Args:
            settings: Application settings with Azure AD credentials.
            vault: Credential vault.
            secret_store: Encrypted secret store.
            provider: Secret store provider key.
        """
        self.settings = settings
        self.vault = vault
        self.secret_store = secret_store
        self.provider = provider
        self._http_cache: dict[Any, Any] = {}

    def _build_app(self) -> msal.ConfidentialClientApplication:
        """
        Create an MSAL confidential client application for one exchange.

        Each app gets its own empty :class:`msal.TokenCache`, which is dropped
        with the app. Only ``http_cache`` (authority discovery responses) is
        shared between exchanges.

        Returns:
            msal.ConfidentialClientApplication: MSAL app instance.

        Raises:
            ConfigurationError: If tenant, client id or client secret is unset.
        """
        if not self.settings.has_azure_credentials:
            raise ConfigurationError("Missing required Azure AD environment variables")

        app = msal.ConfidentialClientApplication(
            client_id=self.settings.azure_client_id,
            client_credential=self.settings.azure_client_secret,
            authority=self.settings.authority,
            token_cache=msal.TokenCache(),
            http_cache=self._http_cache,
        )
        logger.debug("Created MSAL confidential client application")
        return app

    def store_refresh_token(self, user_id: str, refresh_token: str) -> None:
        """
        Encrypt and upsert a user's refresh token.

        Args:
            user_id: User ID.
            refresh_token: Plaintext refresh token.
        """
        self.secret_store.put(user_id, self.provider, self.vault.encrypt(refresh_token))

    def delete_refresh_token(self, user_id: str) -> None:
        """Forget a user's refresh token (sign-out)."""
        self.secret_store.delete(user_id, self.provider)

    def get_access_token(self, user_id: str, scopes: list[str]) -> str:
        """
        Acquire an access token for a user.

        Strategy:
            1. Load the encrypted refresh token; none means re-authenticate.
            2. Decrypt it (tampering raises :class:`IntegrityError`).
            3. Redeem it with Azure AD for the requested scopes.
            4. If Azure AD rotated the refresh token, store the new one.

        Args:
            user_id: User ID.
            scopes: Graph scopes required by the caller.

        Returns:
            str: Access token.

        Raises:
            NoCredentialError: If no refresh token is stored for the user.
            IntegrityError: If the stored token fails decryption.
            ConfigurationError: If Azure AD settings are incomplete.
            AuthenticationError: If Azure AD rejects the exchange.
        """
        encrypted = self.secret_store.get(user_id, self.provider)
        if not encrypted:
            logger.warning("No refresh token stored (user_id=%s)", user_id)
            raise NoCredentialError(user_id, self.provider)

        refresh_token = self.vault.decrypt(encrypted)
        app = self._build_app()

        try:
            result = app.acquire_token_by_refresh_token(refresh_token, scopes=scopes)
        except Exception as e:
            logger.error("Token exchange failed (user_id=%s): %s", user_id, e)
            raise AuthenticationError("Failed to authenticate. Please sign in again.") from e

        if not result or "access_token" not in result:
            result = result or {}
            error = result.get("error", "unknown")
            error_description = result.get("error_description", "Unknown error")
            logger.error(f"Failed to acquire token for {user_id}: {error} - {error_description}")
            raise AuthenticationError("Failed to authenticate. Please sign in again.")

        rotated = result.get("refresh_token")
        if rotated and rotated != refresh_token:
            self.store_refresh_token(user_id, rotated)
            logger.debug("Stored rotated refresh token (user_id=%s)", user_id)

        return result["access_token"]

    def exchange_code_for_tokens(
        self, code: str, scopes: list[str], redirect_uri: Optional[str] = None
    ) -> dict[str, Any]:
        """
        Redeem an authorization code obtained at sign-in.

        Args:
            code: Authorization code from the redirect.
            scopes: Scopes requested at sign-in.
            redirect_uri: Redirect URI (defaults to settings).

        Returns:
            dict[str, Any]: Raw MSAL result (contains ``refresh_token``).

        Raises:
            AuthenticationError: If the code cannot be redeemed.
        """
        app = self._build_app()
        try:
            result = app.acquire_token_by_authorization_code(
                code,
                scopes=scopes,
                redirect_uri=redirect_uri or self.settings.azure_redirect_uri,
            )
        except Exception as e:
            raise AuthenticationError(f"Failed to exchange code for tokens: {e}") from e

        if not result or "access_token" not in result:
            error_description = (result or {}).get("error_description", "Unknown error")
            raise AuthenticationError(f"Failed to exchange code for tokens: {error_description}")
        return result
