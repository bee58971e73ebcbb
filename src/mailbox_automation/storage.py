"""Secret and audit stores.

Objective:
    Provide the document-store collaborators the core writes to:
    - a secret store holding one encrypted refresh token per
      ``(user_id, provider)`` with upsert semantics;
    - an append-only audit store queried newest first.

Responsibilities:
    - Define the store interfaces (:class:`SecretStore`, :class:`AuditStore`).
    - Implement the local file backend (JSON under ``settings.data_dir``).
    - Build the configured backend (:func:`build_stores`).

High-level call tree:
    - :func:`build_stores`
        - :class:`FileSecretStore` / :class:`FileAuditStore` (``file``)
        - :class:`mailbox_automation.blob_storage.BlobSecretStore` /
          :class:`mailbox_automation.blob_storage.BlobAuditStore` (``azure_blob``)

Operational notes:
    - The file backend serializes writers with an in-process lock and replaces
      files atomically. It is intended for a single process.
    - Store failures raise :class:`StorageError` (secrets) or
      :class:`AuditError` (audit records).
"""

from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol

from pydantic import ValidationError as PydanticValidationError

from .config import Settings, StoreBackend
from .errors import AuditError, ConfigurationError, StorageError
from .models import AuditRecord, SecretRecord

logger = logging.getLogger(__name__)

SECRETS_FILE_NAME = "secrets.json"
AUDIT_FILE_NAME = "audit_logs.jsonl"


class SecretStore(Protocol):
    """Encrypted secret persistence."""

    def get(self, user_id: str, provider: str) -> Optional[str]:
        """Return the stored ciphertext, or None when absent."""
        ...

    def put(self, user_id: str, provider: str, ciphertext: str) -> None:
        """Create or update the secret for ``(user_id, provider)``."""
        ...

    def delete(self, user_id: str, provider: str) -> None:
        """Remove the secret if present."""
        ...


class AuditStore(Protocol):
    """Append-only audit persistence."""

    def append(self, record: AuditRecord) -> None:
        """Persist one record."""
        ...

    def query(self, user_id: str, limit: int) -> list[AuditRecord]:
        """Return up to ``limit`` records for a user, newest first."""
        ...


def utc_now() -> datetime:
    """Return the current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)


def _atomic_write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(content, encoding="utf-8")
    os.replace(tmp_path, path)


class FileSecretStore:
    """
    Secret store backed by a single JSON file.

    Documents are keyed by ``"<user_id>:<provider>"`` so a pair can never be
    duplicated.

    Attributes:
        path: JSON file location.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()

    @staticmethod
    def _key(user_id: str, provider: str) -> str:
        return f"{user_id}:{provider}"

    def _load(self) -> dict[str, dict]:
        if not self.path.exists():
            return {}
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise StorageError(f"Failed to read secret store {self.path}: {e}") from e

    def _save(self, documents: dict[str, dict]) -> None:
        try:
            _atomic_write(self.path, json.dumps(documents, indent=2))
        except OSError as e:
            raise StorageError(f"Failed to write secret store {self.path}: {e}") from e

    def get(self, user_id: str, provider: str) -> Optional[str]:
        """
        Get the encrypted secret for a user and provider.

        Args:
            user_id: User ID.
            provider: Provider key (e.g. ``"microsoft"``).

        Returns:
            Optional[str]: Ciphertext, or None when no secret exists.

        Raises:
            StorageError: If the store cannot be read.
        """
        with self._lock:
            document = self._load().get(self._key(user_id, provider))

        if not document:
            return None
        try:
            return SecretRecord.model_validate(document).encrypted_value
        except PydanticValidationError as e:
            raise StorageError(f"Corrupted secret document for user {user_id}: {e}") from e

    def put(self, user_id: str, provider: str, ciphertext: str) -> None:
        """
        Upsert the encrypted secret for a user and provider.

        ``created_at`` is preserved on update; ``updated_at`` is refreshed.

        Args:
            user_id: User ID.
            provider: Provider key.
            ciphertext: Encrypted value.

        Raises:
            StorageError: If the store cannot be read or written.
        """
        key = self._key(user_id, provider)
        now = utc_now()

        with self._lock:
            documents = self._load()
            existing = documents.get(key)
            created_at = existing.get("createdAt") if existing else None
            record = SecretRecord(
                user_id=user_id,
                provider=provider,
                encrypted_value=ciphertext,
                created_at=created_at or now,
                updated_at=now,
            )
            documents[key] = record.model_dump(mode="json", by_alias=True)
            self._save(documents)

        logger.info("Secret saved (user_id=%s, provider=%s, updated=%s)", user_id, provider, bool(existing))

    def delete(self, user_id: str, provider: str) -> None:
        """
        Delete the secret for a user and provider, if present.

        Args:
            user_id: User ID.
            provider: Provider key.

        Raises:
            StorageError: If the store cannot be read or written.
        """
        with self._lock:
            documents = self._load()
            if documents.pop(self._key(user_id, provider), None) is None:
                return
            self._save(documents)

        logger.info("Secret deleted (user_id=%s, provider=%s)", user_id, provider)


class FileAuditStore:
    """Audit store backed by a JSON-lines file (one record per line)."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()

    def append(self, record: AuditRecord) -> None:
        """
        Append one audit record.

        Args:
            record: Record to persist (``created_at`` already set).

        Raises:
            AuditError: If the file cannot be written.
        """
        line = record.model_dump_json(by_alias=True)
        try:
            with self._lock:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as handle:
                    handle.write(line + "\n")
        except OSError as e:
            raise AuditError(f"Failed to append audit record to {self.path}: {e}") from e

    def query(self, user_id: str, limit: int) -> list[AuditRecord]:
        """
        Return the most recent records for a user.

        Unparseable lines are skipped with a warning.

        Args:
            user_id: User ID.
            limit: Maximum number of records.

        Returns:
            list[AuditRecord]: Records, newest first.

        Raises:
            AuditError: If the file cannot be read.
        """
        if not self.path.exists():
            return []

        try:
            with self._lock:
                lines = self.path.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            raise AuditError(f"Failed to read audit records from {self.path}: {e}") from e

        records = []
        for line in lines:
            if not line.strip():
                continue
            try:
                record = AuditRecord.model_validate_json(line)
            except PydanticValidationError as e:
                logger.warning(f"Skipping unparseable audit line: {e}")
                continue
            if record.user_id == user_id:
                records.append(record)

        records.sort(key=lambda r: r.created_at or datetime.min.replace(tzinfo=timezone.utc), reverse=True)
        return records[:limit]


def build_stores(settings: Settings) -> tuple[SecretStore, AuditStore]:
    """
    Create the secret and audit stores for the configured backend.

    Args:
        settings: Application settings.

    Returns:
        tuple[SecretStore, AuditStore]: Secret store and audit store.

    Raises:
        ConfigurationError: If ``azure_blob`` is selected without account URL
            and container.
    """
    if settings.store_backend == StoreBackend.AZURE_BLOB:
        account_url = (settings.store_blob_account_url or "").strip()
        container = (settings.store_blob_container or "").strip()
        if not (account_url and container):
            raise ConfigurationError(
                "store_backend=azure_blob requires STORE_BLOB_ACCOUNT_URL and STORE_BLOB_CONTAINER"
            )

        from .blob_storage import BlobAuditStore, BlobContainerLocation, BlobSecretStore

        location = BlobContainerLocation(account_url=account_url, container_name=container)
        logger.debug("Using Azure Blob stores (container=%s)", container)
        return BlobSecretStore(location), BlobAuditStore(location)

    data_dir = Path(settings.data_dir)
    logger.debug("Using file stores under %s", data_dir)
    return (
        FileSecretStore(data_dir / SECRETS_FILE_NAME),
        FileAuditStore(data_dir / AUDIT_FILE_NAME),
    )
