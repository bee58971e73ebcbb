import base64

import pytest

from mailbox_automation.config import Settings

TEST_KEY = base64.b64encode(bytes(range(32))).decode("ascii")
WEBHOOK_SECRET = "n8n-shared-secret"
WEBHOOK_URL = "https://n8n.example.com/webhook/mailbox"


@pytest.fixture()
def settings(tmp_path) -> Settings:
    """Fully configured settings using file stores under a temp directory."""

    return Settings(
        _env_file=None,
        azure_client_id="client-id",
        azure_client_secret="client-secret",
        azure_tenant_id="tenant-id",
        encryption_key_32b_base64=TEST_KEY,
        n8n_webhook_url=WEBHOOK_URL,
        n8n_signature_secret=WEBHOOK_SECRET,
        data_dir=tmp_path,
    )
