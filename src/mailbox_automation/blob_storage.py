"""Azure Blob Storage backed secret and audit stores.

Objective:
    Persist encrypted refresh tokens and audit records in Azure Blob Storage so
    the service can run in Azure Container Apps without local state.

Layout (inside one container):
    - ``secrets/<user_id>/<provider>.json``: one JSON document per secret.
    - ``audit/<user_id>/<created_at>-<uuid>.json``: one blob per audit record.
      Timestamps are zero-padded UTC so lexical order is chronological order.

Key points:
    - Secret upserts use optimistic concurrency control with blob ETags.
    - Uses DefaultAzureCredential for authentication (Managed Identity in Azure).

Operational notes:
    - Secrets blobs contain encrypted refresh tokens. Treat container access as
      sensitive and restrict the app identity to this container.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import quote

from azure.core import MatchConditions
from azure.core.exceptions import (
    AzureError,
    ResourceExistsError,
    ResourceModifiedError,
    ResourceNotFoundError,
)
from azure.identity import DefaultAzureCredential
from azure.storage.blob import ContainerClient
from pydantic import ValidationError as PydanticValidationError

from .errors import AuditError, StorageError
from .models import AuditRecord, SecretRecord
from .storage import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BlobContainerLocation:
    """Location of the storage container.

    Args:
        account_url: Storage account blob endpoint URL.
        container_name: Blob container name.
    """

    account_url: str
    container_name: str


def _segment(value: str) -> str:
    """Encode a user-supplied value as a single blob path segment."""
    return quote(value, safe="")


class _BlobStoreBase:
    """Shared container client construction."""

    def __init__(self, location: BlobContainerLocation) -> None:
        """Initialize the store.

        Args:
            location: Target container location.
        """

        self._location = location
        self._credential = DefaultAzureCredential(exclude_interactive_browser_credential=True)

    def _get_container_client(self) -> ContainerClient:
        """Create a ContainerClient using DefaultAzureCredential.

        Returns:
            ContainerClient: Configured container client.
        """

        return ContainerClient(
            account_url=self._location.account_url,
            container_name=self._location.container_name,
            credential=self._credential,
        )


class BlobSecretStore(_BlobStoreBase):
    """Store and retrieve encrypted secrets, one blob per ``(user, provider)``.

    Updates implement ETag-based optimistic concurrency so that a concurrent
    writer is never silently overwritten with a stale ``created_at``.
    """

    @staticmethod
    def _blob_name(user_id: str, provider: str) -> str:
        return f"secrets/{_segment(user_id)}/{_segment(provider)}.json"

    def _download(self, blob_name: str) -> Tuple[Optional[SecretRecord], Optional[str]]:
        """Download a secret document and its ETag.

        Returns:
            tuple[Optional[SecretRecord], Optional[str]]: (record, etag). If the
            blob does not exist, returns (None, None).
        """

        blob = self._get_container_client().get_blob_client(blob_name)
        try:
            downloader = blob.download_blob()
            data = downloader.readall()
            # ETag of the downloaded content, not of a later state of the blob
            etag = downloader.properties.etag
        except ResourceNotFoundError:
            return None, None

        text = data.decode("utf-8") if isinstance(data, (bytes, bytearray)) else str(data)
        try:
            return SecretRecord.model_validate_json(text), etag
        except PydanticValidationError as exc:
            raise StorageError(f"Corrupted secret blob {blob_name}: {exc}") from exc

    def get(self, user_id: str, provider: str) -> Optional[str]:
        """Get the encrypted secret for a user and provider.

        Returns:
            Optional[str]: Ciphertext, or None when absent.

        Raises:
            StorageError: If the blob cannot be read.
        """

        try:
            record, _etag = self._download(self._blob_name(user_id, provider))
        except AzureError as exc:
            raise StorageError(f"Failed to read secret blob: {exc}") from exc
        return record.encrypted_value if record else None

    def put(self, user_id: str, provider: str, ciphertext: str, max_retries: int = 5) -> None:
        """Upsert the encrypted secret using ETag concurrency.

        Args:
            user_id: User ID.
            provider: Provider key.
            ciphertext: Encrypted value.
            max_retries: Number of retries on ETag conflicts.

        Raises:
            StorageError: If the secret cannot be written after retries.
        """

        blob_name = self._blob_name(user_id, provider)

        for attempt in range(max_retries):
            try:
                existing, etag = self._download(blob_name)
                now = utc_now()
                record = SecretRecord(
                    user_id=user_id,
                    provider=provider,
                    encrypted_value=ciphertext,
                    created_at=existing.created_at if existing else now,
                    updated_at=now,
                )
                payload = record.model_dump_json(by_alias=True).encode("utf-8")

                blob = self._get_container_client().get_blob_client(blob_name)
                if etag is None:
                    # Create only if it doesn't exist
                    blob.upload_blob(payload, overwrite=False)
                else:
                    # Overwrite only if ETag matches
                    blob.upload_blob(
                        payload,
                        overwrite=True,
                        etag=etag,
                        match_condition=MatchConditions.IfNotModified,
                    )
                logger.info("Secret saved to Azure Blob (user_id=%s, provider=%s)", user_id, provider)
                return
            except (ResourceModifiedError, ResourceExistsError):
                # Someone updated the blob between download and upload
                logger.warning("Secret blob ETag conflict; retrying (attempt=%s)", attempt + 1)
            except AzureError as exc:
                raise StorageError(f"Failed to upload secret blob: {exc}") from exc

            # Small backoff
            time.sleep(0.2 * (attempt + 1))

        raise StorageError("Failed to upload secret blob due to repeated ETag conflicts")

    def delete(self, user_id: str, provider: str) -> None:
        """Delete the secret blob if present.

        Raises:
            StorageError: If the delete call fails.
        """

        blob = self._get_container_client().get_blob_client(self._blob_name(user_id, provider))
        try:
            blob.delete_blob()
            logger.info("Secret deleted from Azure Blob (user_id=%s, provider=%s)", user_id, provider)
        except ResourceNotFoundError:
            return
        except AzureError as exc:
            raise StorageError(f"Failed to delete secret blob: {exc}") from exc


class BlobAuditStore(_BlobStoreBase):
    """Append-only audit store writing one immutable blob per record."""

    @staticmethod
    def _prefix(user_id: str) -> str:
        return f"audit/{_segment(user_id)}/"

    def append(self, record: AuditRecord) -> None:
        """Write one audit record as a new blob.

        Raises:
            AuditError: If the upload fails.
        """

        created_at = record.created_at or utc_now()
        stamp = created_at.strftime("%Y%m%dT%H%M%S%fZ")
        blob_name = f"{self._prefix(record.user_id)}{stamp}-{uuid.uuid4().hex}.json"

        try:
            self._get_container_client().upload_blob(
                name=blob_name,
                data=record.model_dump_json(by_alias=True).encode("utf-8"),
                overwrite=False,
            )
        except AzureError as exc:
            raise AuditError(f"Failed to upload audit blob: {exc}") from exc

    def query(self, user_id: str, limit: int) -> list[AuditRecord]:
        """Return the newest ``limit`` audit records for a user.

        Raises:
            AuditError: If listing or downloading fails.
        """

        container = self._get_container_client()
        try:
            names = sorted(
                (b.name for b in container.list_blobs(name_starts_with=self._prefix(user_id))),
                reverse=True,
            )
            records = []
            for name in names[:limit]:
                data = container.get_blob_client(name).download_blob().readall()
                try:
                    records.append(AuditRecord.model_validate(json.loads(data)))
                except (PydanticValidationError, ValueError) as exc:
                    logger.warning("Skipping unparseable audit blob %s: %s", name, exc)
            return records
        except AzureError as exc:
            raise AuditError(f"Failed to query audit blobs: {exc}") from exc
