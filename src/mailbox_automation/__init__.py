"""Mailbox Automation package.

Objective:
    Let users of an organization manage their out-of-office (OOF) automatic
    replies and inbox forwarding rules. Each change is executed either:
        - directly against Microsoft Graph (``graph`` mode), or
        - by posting an HMAC-signed webhook to an n8n workflow (``n8n`` mode).
    Every execution attempt is recorded in an append-only audit trail.

Key modules:
    - :mod:`mailbox_automation.crypto`:
        AES-256-GCM credential vault for refresh tokens at rest.
    - :mod:`mailbox_automation.token_broker`:
        Refresh-token exchange through MSAL, with refresh-token rotation.
    - :mod:`mailbox_automation.graph_client`:
        Graph API wrapper for mailbox settings and inbox rules.
    - :mod:`mailbox_automation.webhook`:
        Signed n8n webhook dispatch and signature verification.
    - :mod:`mailbox_automation.router`:
        Dual-mode execution with unconditional audit recording.
    - :mod:`mailbox_automation.orchestrator`:
        Component wiring and the public mailbox operations.
    - :mod:`mailbox_automation.cli` / :mod:`mailbox_automation.webapp`:
        User-facing entrypoints.
"""

__version__ = "0.1.0"
