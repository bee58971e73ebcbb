import json
from datetime import datetime, timedelta, timezone

import pytest

from mailbox_automation.config import ExecutionMode, StoreBackend
from mailbox_automation.errors import ConfigurationError, StorageError
from mailbox_automation.models import AuditRecord, AuditStatus
from mailbox_automation.storage import (
    AUDIT_FILE_NAME,
    SECRETS_FILE_NAME,
    FileAuditStore,
    FileSecretStore,
    build_stores,
)


def _record(user_id: str, minutes: int, status: AuditStatus = AuditStatus.SUCCESS) -> AuditRecord:
    return AuditRecord(
        user_id=user_id,
        user_email=f"{user_id}@contoso.com",
        action="set-oof",
        mode=ExecutionMode.GRAPH,
        status=status,
        payload="{}",
        created_at=datetime(2026, 10, 1, tzinfo=timezone.utc) + timedelta(minutes=minutes),
    )


def test_secret_store_missing_returns_none(tmp_path) -> None:
    """Reading a secret that was never stored yields None."""

    store = FileSecretStore(tmp_path / "secrets.json")

    assert store.get("u1", "microsoft") is None


def test_secret_store_upsert_keeps_single_document(tmp_path) -> None:
    """A second put replaces the value and preserves createdAt."""

    path = tmp_path / "secrets.json"
    store = FileSecretStore(path)

    store.put("u1", "microsoft", "cipher-1")
    first = json.loads(path.read_text())["u1:microsoft"]

    store.put("u1", "microsoft", "cipher-2")
    documents = json.loads(path.read_text())

    assert list(documents) == ["u1:microsoft"]
    assert documents["u1:microsoft"]["encryptedValue"] == "cipher-2"
    assert documents["u1:microsoft"]["createdAt"] == first["createdAt"]
    assert store.get("u1", "microsoft") == "cipher-2"


def test_secret_store_keys_by_user_and_provider(tmp_path) -> None:
    """Different users and providers never share a document."""

    store = FileSecretStore(tmp_path / "secrets.json")

    store.put("u1", "microsoft", "a")
    store.put("u2", "microsoft", "b")
    store.put("u1", "other", "c")

    assert store.get("u1", "microsoft") == "a"
    assert store.get("u2", "microsoft") == "b"
    assert store.get("u1", "other") == "c"


def test_secret_store_delete(tmp_path) -> None:
    """Delete removes the secret and ignores missing ones."""

    store = FileSecretStore(tmp_path / "secrets.json")
    store.put("u1", "microsoft", "a")

    store.delete("u1", "microsoft")
    store.delete("u1", "microsoft")

    assert store.get("u1", "microsoft") is None


def test_secret_store_corrupted_file_raises(tmp_path) -> None:
    """A file that is not JSON surfaces as StorageError."""

    path = tmp_path / "secrets.json"
    path.write_text("{not json")

    with pytest.raises(StorageError):
        FileSecretStore(path).get("u1", "microsoft")


def test_audit_store_query_is_newest_first_and_limited(tmp_path) -> None:
    """Query filters by user, sorts newest first and applies the limit."""

    store = FileAuditStore(tmp_path / "audit.jsonl")
    store.append(_record("u1", 1))
    store.append(_record("u2", 2))
    store.append(_record("u1", 3, AuditStatus.ERROR))
    store.append(_record("u1", 2))

    records = store.query("u1", 2)

    assert [r.created_at.minute for r in records] == [3, 2]
    assert all(r.user_id == "u1" for r in records)
    assert records[0].status == AuditStatus.ERROR


def test_audit_store_skips_unparseable_lines(tmp_path) -> None:
    """Broken lines are ignored instead of failing the whole query."""

    path = tmp_path / "audit.jsonl"
    store = FileAuditStore(path)
    store.append(_record("u1", 1))
    with path.open("a") as handle:
        handle.write("garbage\n")

    assert len(store.query("u1", 10)) == 1


def test_audit_store_missing_file_returns_empty(tmp_path) -> None:
    """No audit file means no records."""

    assert FileAuditStore(tmp_path / "audit.jsonl").query("u1", 10) == []


def test_build_stores_file_backend(settings) -> None:
    """The file backend places both stores under data_dir."""

    secret_store, audit_store = build_stores(settings)

    assert isinstance(secret_store, FileSecretStore)
    assert isinstance(audit_store, FileAuditStore)
    assert secret_store.path == settings.data_dir / SECRETS_FILE_NAME
    assert audit_store.path == settings.data_dir / AUDIT_FILE_NAME


def test_build_stores_blob_backend_requires_location(settings) -> None:
    """azure_blob without account URL and container is a configuration error."""

    blob_settings = settings.model_copy(update={"store_backend": StoreBackend.AZURE_BLOB})

    with pytest.raises(ConfigurationError):
        build_stores(blob_settings)


def test_build_stores_blob_backend(settings, monkeypatch) -> None:
    """azure_blob builds blob stores bound to the configured container."""

    from mailbox_automation import blob_storage

    monkeypatch.setattr(blob_storage, "DefaultAzureCredential", lambda **kwargs: object())

    blob_settings = settings.model_copy(
        update={
            "store_backend": StoreBackend.AZURE_BLOB,
            "store_blob_account_url": "https://example.blob.core.windows.net",
            "store_blob_container": "mailbox",
        }
    )

    secret_store, audit_store = build_stores(blob_settings)

    assert isinstance(secret_store, blob_storage.BlobSecretStore)
    assert isinstance(audit_store, blob_storage.BlobAuditStore)
