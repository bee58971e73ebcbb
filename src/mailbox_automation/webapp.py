"""FastAPI JSON API for mailbox automation.

Objective:
    Expose the orchestrator operations over HTTP. This module keeps business
    logic inside :mod:`mailbox_automation.orchestrator` and only handles
    request parsing, principal lookup and response/status mapping.

High-level call tree:
    - :func:`create_app`:
        - defines routes:
            - ``GET /health`` -> :func:`health`
            - ``GET /api/oof`` / ``POST /api/oof``
            - ``GET /api/forwarding`` / ``POST /api/forwarding`` /
              ``DELETE /api/forwarding``
            - ``GET /api/audit``
            - ``GET /api/users``
            - ``POST /api/webhooks/n8n``
        - registers :func:`_handle_app_error` for the error taxonomy,
          :func:`_handle_request_validation_error` (400) and
          :func:`_handle_unexpected_error` (500)
        - builds the orchestrator at startup in :func:`_lifespan`
    - :func:`get_orchestrator` / :func:`get_dispatcher` / :func:`get_current_user`:
        FastAPI dependencies, overridden in tests via ``app.dependency_overrides``.

Data flow:
    - HTTP request -> principal -> validate body -> orchestrator -> JSON.

Operational notes:
    - Authentication happens in front of this app (Azure App Service /
      Container Apps authentication). The authenticated principal arrives in
      the ``X-MS-CLIENT-PRINCIPAL-ID`` and ``X-MS-CLIENT-PRINCIPAL-NAME``
      headers, which the platform strips from client requests.
    - Responses are ``{"success": true, "data": ...}`` or
      ``{"success": false, "error": "..."}`` with 400/401/403/500 status.
"""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any, AsyncIterator, Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .config import Settings, get_settings
from .errors import AuthenticationError, MailboxAutomationError, http_status_for
from .logging_config import setup_logging
from .models import UserIdentity
from .orchestrator import MailboxOrchestrator
from .validators import (
    parse_clear_forwarding_intent,
    parse_forwarding_intent,
    parse_oof_intent,
)
from .webhook import SIGNATURE_HEADER, WebhookDispatcher

logger = logging.getLogger(__name__)


@lru_cache
def get_app_settings() -> Settings:
    """Load settings once per process.

    Returns:
        Settings: Application settings.
    """

    return get_settings()


@lru_cache
def get_orchestrator() -> MailboxOrchestrator:
    """Create the process-wide :class:`MailboxOrchestrator`.

    Construction validates the encryption key. It runs once at startup from
    :func:`_lifespan`, so a misconfigured process refuses to start.

    Returns:
        MailboxOrchestrator: Shared orchestrator instance.
    """

    return MailboxOrchestrator(settings=get_app_settings())


def get_dispatcher() -> WebhookDispatcher:
    """Create a webhook dispatcher for callback verification.

    Returns:
        WebhookDispatcher: Dispatcher bound to the current settings.
    """

    return WebhookDispatcher(get_app_settings())


def get_current_user(
    principal_id: Optional[str] = Header(default=None, alias="X-MS-CLIENT-PRINCIPAL-ID"),
    principal_name: Optional[str] = Header(default=None, alias="X-MS-CLIENT-PRINCIPAL-NAME"),
) -> UserIdentity:
    """Resolve the authenticated principal from platform headers.

    Args:
        principal_id: Azure AD object ID of the signed-in user.
        principal_name: UPN / email of the signed-in user.

    Returns:
        UserIdentity: Acting principal.

    Raises:
        AuthenticationError: If the headers are missing.
    """

    if not principal_id or not principal_name:
        raise AuthenticationError("Authentication required")
    return UserIdentity(user_id=principal_id, email=principal_name)


def _ok(data: Any) -> dict[str, Any]:
    return {"success": True, "data": data}


def _handle_app_error(request: Request, exc: MailboxAutomationError) -> JSONResponse:
    """Map application errors to a JSON error response.

    Args:
        request: Failing request.
        exc: Application error.

    Returns:
        JSONResponse: ``{"success": false, "error": ...}`` with the classified
        status code.
    """

    status_code = http_status_for(exc)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.warning("%s %s rejected (%s): %s", request.method, request.url.path, status_code, exc.message)
    return JSONResponse({"success": False, "error": exc.message}, status_code=status_code)


def _handle_request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Map FastAPI request parsing failures (bad JSON, wrong body type,
    out-of-range query values) to a 400 in the application's error shape.
    """

    parts = []
    for item in exc.errors():
        location = ".".join(str(p) for p in item.get("loc", ()))
        message = str(item.get("msg", "invalid value"))
        parts.append(f"{location}: {message}" if location else message)
    error = "Invalid request: " + ("; ".join(parts) or "malformed input")

    logger.warning("%s %s rejected (400): %s", request.method, request.url.path, error)
    return JSONResponse({"success": False, "error": error}, status_code=400)


def _handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    """Return a 500 in the application's error shape for anything unclassified."""

    logger.exception("%s %s failed unexpectedly", request.method, request.url.path)
    return JSONResponse({"success": False, "error": "Internal server error"}, status_code=500)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the orchestrator at startup.

    A bad encryption key or store configuration raises
    :class:`ConfigurationError` here, so the process fails to start instead of
    answering every request with 500.
    """

    factory = app.dependency_overrides.get(get_orchestrator, get_orchestrator)
    factory()
    logger.info("Mailbox automation API started")
    yield


def create_app(configure_logging: bool = False) -> FastAPI:
    """Create and configure the FastAPI application.

    Routes:
        - ``GET /health``: Basic liveness check.
        - ``GET|POST /api/oof``: Read / set automatic replies.
        - ``GET|POST|DELETE /api/forwarding``: Read / create / remove the
          forwarding rule.
        - ``GET /api/audit``: Recent audit records of the caller.
        - ``GET /api/users``: Organization user search.
        - ``POST /api/webhooks/n8n``: Signed n8n callback.

    Args:
        configure_logging: Install the application logging configuration.

    Returns:
        FastAPI: FastAPI app.
    """

    if configure_logging:
        setup_logging(get_app_settings().log_level)

    app = FastAPI(title="Mailbox Automation", lifespan=_lifespan)
    app.add_exception_handler(MailboxAutomationError, _handle_app_error)
    app.add_exception_handler(RequestValidationError, _handle_request_validation_error)
    app.add_exception_handler(Exception, _handle_unexpected_error)

    @app.get("/health")
    def health() -> dict[str, str]:
        """Health check endpoint.

        This is intentionally simple and should not perform external calls.

        Returns:
            dict[str, str]: Health payload.
        """

        return {"status": "ok"}

    @app.get("/api/oof")
    def get_oof(
        user: UserIdentity = Depends(get_current_user),
        orchestrator: MailboxOrchestrator = Depends(get_orchestrator),
    ) -> dict[str, Any]:
        """Return current automatic replies settings (always via Graph)."""

        return _ok(orchestrator.get_oof_settings(user.user_id))

    @app.post("/api/oof")
    def set_oof(
        payload: dict[str, Any],
        user: UserIdentity = Depends(get_current_user),
        orchestrator: MailboxOrchestrator = Depends(get_orchestrator),
    ) -> dict[str, Any]:
        """Set automatic replies.

        Expected request body:
            ``{"settings": {"status": "scheduled", ...}, "mode": "graph"}``

        Args:
            payload: JSON body with ``settings`` and optional ``mode``.
            user: Acting principal.
            orchestrator: Orchestrator dependency.

        Returns:
            dict[str, Any]: Execution result.
        """

        intent = parse_oof_intent(payload.get("settings"))
        outcome = orchestrator.set_oof_settings(user, intent, payload.get("mode"))
        return _ok(outcome.data)

    @app.get("/api/forwarding")
    def get_forwarding(
        user: UserIdentity = Depends(get_current_user),
        orchestrator: MailboxOrchestrator = Depends(get_orchestrator),
    ) -> dict[str, Any]:
        """Return the current forwarding rule status (always via Graph)."""

        status = orchestrator.get_forwarding_status(user.user_id)
        return _ok(status.model_dump(by_alias=True, exclude_none=True))

    @app.post("/api/forwarding")
    def set_forwarding(
        payload: dict[str, Any],
        user: UserIdentity = Depends(get_current_user),
        orchestrator: MailboxOrchestrator = Depends(get_orchestrator),
    ) -> dict[str, Any]:
        """Create a forwarding rule.

        Expected request body:
            ``{"rule": {"forwardTo": "a@x.com", "keepCopy": true}, "mode": "n8n"}``

        Args:
            payload: JSON body with ``rule`` and optional ``mode``.
            user: Acting principal.
            orchestrator: Orchestrator dependency.

        Returns:
            dict[str, Any]: Execution result.
        """

        intent = parse_forwarding_intent(payload.get("rule"))
        outcome = orchestrator.set_forwarding(user, intent, payload.get("mode"))
        return _ok(outcome.data)

    @app.delete("/api/forwarding")
    def clear_forwarding(
        forward_to: Optional[str] = Query(default=None, alias="forwardTo"),
        mode: Optional[str] = Query(default=None),
        user: UserIdentity = Depends(get_current_user),
        orchestrator: MailboxOrchestrator = Depends(get_orchestrator),
    ) -> dict[str, Any]:
        """Delete the forwarding rule targeting ``forwardTo``."""

        intent = parse_clear_forwarding_intent(forward_to)
        outcome = orchestrator.clear_forwarding(user, intent, mode)
        return _ok(outcome.data)

    @app.get("/api/audit")
    def list_audit(
        limit: int = Query(default=50, ge=1, le=500),
        user: UserIdentity = Depends(get_current_user),
        orchestrator: MailboxOrchestrator = Depends(get_orchestrator),
    ) -> dict[str, Any]:
        """Return the caller's most recent audit records, newest first."""

        records = orchestrator.list_audit_logs(user.user_id, limit)
        return _ok([r.model_dump(mode="json", by_alias=True) for r in records])

    @app.get("/api/users")
    def search_users(
        search: str = Query(default=""),
        user: UserIdentity = Depends(get_current_user),
        orchestrator: MailboxOrchestrator = Depends(get_orchestrator),
    ) -> dict[str, Any]:
        """Search users of the organization (queries under 2 chars return [])."""

        return _ok(orchestrator.search_users(user.user_id, search))

    @app.post("/api/webhooks/n8n")
    async def n8n_callback(
        request: Request,
        dispatcher: WebhookDispatcher = Depends(get_dispatcher),
    ) -> Any:
        """Accept a signed callback from n8n.

        The signature is checked over the raw body bytes before parsing.

        Args:
            request: Incoming request.
            dispatcher: Dispatcher used for verification.

        Returns:
            Any: Acknowledgement, or a 401/400 JSON error.
        """

        body = await request.body()
        if not dispatcher.verify(body, request.headers.get(SIGNATURE_HEADER)):
            logger.warning("Rejected n8n callback with invalid signature")
            return JSONResponse({"success": False, "error": "Invalid signature"}, status_code=401)

        try:
            event = json.loads(body)
        except ValueError:
            return JSONResponse({"success": False, "error": "Body must be JSON"}, status_code=400)

        if not isinstance(event, dict):
            return JSONResponse({"success": False, "error": "Body must be a JSON object"}, status_code=400)

        logger.info(
            "n8n callback received (action=%s, subject_id=%s, status=%s)",
            event.get("action"),
            event.get("subjectId"),
            event.get("status"),
        )
        return {"success": True}

    return app


app = create_app(configure_logging=True)
