"""Credential vault for secrets at rest.

Objective:
    Encrypt refresh tokens before they reach the secret store and decrypt them
    when the token broker needs them.

Format:
    ``base64(nonce || tag || ciphertext)`` using AES-256-GCM with a fresh
    16-byte random nonce per call and a 16-byte authentication tag.

Operational notes:
    - The key is ``ENCRYPTION_KEY_32B_BASE64`` (base64 of exactly 32 bytes).
      A missing or malformed key raises :class:`ConfigurationError` when the
      vault is constructed, which happens once at process start.
    - Any decryption failure (bad encoding, truncated input, tag mismatch)
      raises :class:`IntegrityError`. Garbage is never returned.
    - Generate a key with ``mailbox-automation generate-key``.
"""

import base64
import binascii
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .config import Settings
from .errors import ConfigurationError, IntegrityError

logger = logging.getLogger(__name__)

KEY_LENGTH = 32
NONCE_LENGTH = 16
TAG_LENGTH = 16


def generate_encryption_key() -> str:
    """Generate a new random 256-bit key for ``ENCRYPTION_KEY_32B_BASE64``.

    Returns:
        str: Base64 encoded key.
    """
    return base64.b64encode(os.urandom(KEY_LENGTH)).decode("ascii")


def _load_key(encoded_key: str | None) -> bytes:
    if not encoded_key:
        raise ConfigurationError("ENCRYPTION_KEY_32B_BASE64 environment variable is not set")

    try:
        key = base64.b64decode(encoded_key.strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ConfigurationError("ENCRYPTION_KEY_32B_BASE64 is not valid base64") from e

    if len(key) != KEY_LENGTH:
        raise ConfigurationError(f"Encryption key must be exactly {KEY_LENGTH} bytes")
    return key


class CredentialVault:
    """
    AES-256-GCM authenticated encryption keyed by a process-wide key.

    Attributes:
        _aesgcm: AEAD cipher bound to the configured key.
    """

    def __init__(self, settings: Settings) -> None:
        """
        Initialize the vault and validate the key.

        Args:
            settings: Application settings holding the base64 key.

        Raises:
            ConfigurationError: If the key is absent or not 32 bytes.
        """
        self._aesgcm = AESGCM(_load_key(settings.encryption_key_32b_base64))

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a string value.

        Args:
            plaintext: Value to protect.

        Returns:
            str: Base64 string containing nonce, tag and ciphertext.
        """
        nonce = os.urandom(NONCE_LENGTH)
        sealed = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
        # AESGCM appends the tag; the stored layout puts it before the ciphertext
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return base64.b64encode(nonce + tag + ciphertext).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt a value produced by :meth:`encrypt`.

        Args:
            ciphertext: Base64 string containing nonce, tag and ciphertext.

        Returns:
            str: Decrypted plaintext.

        Raises:
            IntegrityError: If the value is malformed, was tampered with, or
                was encrypted under another key.
        """
        encoded = (ciphertext or "").strip()
        try:
            combined = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as e:
            raise IntegrityError("Encrypted value is not valid base64") from e

        # Non-canonical encodings decode to the same bytes; reject them so any
        # altered character is detected.
        if base64.b64encode(combined).decode("ascii") != encoded:
            raise IntegrityError("Encrypted value is not canonically encoded")

        if len(combined) < NONCE_LENGTH + TAG_LENGTH:
            raise IntegrityError("Encrypted value is truncated")

        nonce = combined[:NONCE_LENGTH]
        tag = combined[NONCE_LENGTH:NONCE_LENGTH + TAG_LENGTH]
        body = combined[NONCE_LENGTH + TAG_LENGTH:]

        try:
            plaintext = self._aesgcm.decrypt(nonce, body + tag, None)
        except InvalidTag as e:
            logger.error("Decryption failed: authentication tag mismatch")
            raise IntegrityError(
                "Encrypted value failed authentication (tampered or wrong key)"
            ) from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise IntegrityError("Decrypted value is not valid UTF-8") from e
