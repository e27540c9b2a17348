"""OAuth endpoints: authorize, callback, token, registration and discovery.

Handlers are intentionally thin:

1. Parse HTTP-layer parameters.
2. Delegate business logic to :class:`OAuthService` (in the thread pool, since
   it takes store locks and may call GitHub).
3. Translate the result or :class:`OAuthError` into a Starlette ``Response``.

SECURITY NOTE
-------------
• No raw secrets (codes, code verifiers, access tokens, client secrets) are
  ever logged.
• Correlation IDs, if present in ``request.state.correlation_id``, are included
  in INFO logs to aid troubleshooting.
"""

from __future__ import annotations

import html
import json
import logging
from typing import TYPE_CHECKING, Any

from starlette.concurrency import run_in_threadpool
from starlette.formparsers import MultiPartException
from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, RedirectResponse, Response

from mcp_time_server.oauth.errors import (
    InvalidClientMetadataError,
    InvalidRequestError,
    OAuthError,
)
from mcp_time_server.oauth.service import OAuthService, error_redirect_url

if TYPE_CHECKING:  # pragma: no cover
    from mcp_time_server.servers.main import TimeServerMCP

_LOG = logging.getLogger("mcp-time-server.auth.routes")

NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}
METADATA_HEADERS = {"Cache-Control": "public, max-age=3600"}


def _html_page(title: str, body: str, status: int = 200) -> HTMLResponse:
    """Return a tiny success / error HTML page."""
    content = (
        "<!doctype html><html lang='en'>"
        "<head><meta charset='utf-8'><title>"
        f"{html.escape(title)}</title></head><body><h1>{html.escape(title)}</h1>"
        f"<p>{html.escape(body)}</p></body></html>"
    )
    return HTMLResponse(content, status_code=status, headers=NO_STORE_HEADERS)


def _json_error(exc: OAuthError, status: int | None = None) -> JSONResponse:
    return JSONResponse(
        exc.to_payload(), status_code=status or exc.status_code, headers=NO_STORE_HEADERS
    )


def _cid(request: Request) -> str:
    return getattr(request.state, "correlation_id", "-")


# --------------------------------------------------------------------------- #
# Public API                                                                  #
# --------------------------------------------------------------------------- #
def register_auth_routes(app: "TimeServerMCP", service: OAuthService) -> None:
    """Attach the OAuth and discovery endpoints to *app*."""

    # ----- discovery ------------------------------------------------------- #
    @app.custom_route("/.well-known/oauth-protected-resource", methods=["GET"])
    async def _protected_resource(request: Request) -> Response:  # noqa: D401
        return JSONResponse(service.protected_resource_metadata(), headers=METADATA_HEADERS)

    @app.custom_route("/.well-known/oauth-authorization-server", methods=["GET"])
    async def _authorization_server(request: Request) -> Response:  # noqa: D401
        return JSONResponse(service.authorization_server_metadata(), headers=METADATA_HEADERS)

    # ----- GET /oauth/authorize -------------------------------------------- #
    @app.custom_route("/oauth/authorize", methods=["GET"])
    async def _authorize(request: Request) -> Response:  # noqa: D401
        params = dict(request.query_params)
        try:
            url = await run_in_threadpool(service.authorize, params)
        except OAuthError as exc:
            _LOG.info(
                "Authorization rejected error=%s client_id=%s correlation_id=%s",
                exc.error_code,
                params.get("client_id", "-"),
                _cid(request),
            )
            if exc.redirect_uri:
                return RedirectResponse(error_redirect_url(exc), status_code=302)
            # redirect_uri not yet trusted: answer directly
            return _json_error(exc, 400)

        _LOG.info(
            "Authorization redirect to GitHub client_id=%s correlation_id=%s",
            params.get("client_id"),
            _cid(request),
        )
        return RedirectResponse(url, status_code=302)

    # ----- GET /oauth/callback --------------------------------------------- #
    @app.custom_route("/oauth/callback", methods=["GET"])
    async def _callback(request: Request) -> Response:  # noqa: D401
        params = dict(request.query_params)
        try:
            url = await run_in_threadpool(service.callback, params)
        except OAuthError as exc:
            _LOG.warning(
                "OAuth callback error=%s correlation_id=%s", exc.error_code, _cid(request)
            )
            if exc.redirect_uri:
                return RedirectResponse(error_redirect_url(exc), status_code=302)
            status = 500 if exc.status_code >= 500 else 400
            return _html_page("Authorization failed", exc.description, status)

        _LOG.info("OAuth callback success correlation_id=%s", _cid(request))
        return RedirectResponse(url, status_code=302)

    # ----- POST /oauth/token ----------------------------------------------- #
    @app.custom_route("/oauth/token", methods=["POST"])
    async def _token(request: Request) -> Response:  # noqa: D401
        try:
            form = await request.form()
        except MultiPartException as exc:
            _LOG.info("Unparseable token request: %s", exc)
            return _json_error(InvalidRequestError("Invalid form data"))
        fields = {k: v for k, v in form.items() if isinstance(v, str)}
        try:
            body = await run_in_threadpool(
                lambda: service.exchange_token(
                    fields, authorization=request.headers.get("authorization")
                )
            )
        except OAuthError as exc:
            _LOG.info(
                "Token request rejected error=%s correlation_id=%s",
                exc.error_code,
                _cid(request),
            )
            response = _json_error(exc)
            if exc.status_code == 401:
                response.headers["WWW-Authenticate"] = 'Basic realm="oauth"'
            return response

        return JSONResponse(body, headers=NO_STORE_HEADERS)

    # ----- POST /register -------------------------------------------------- #
    @app.custom_route("/register", methods=["POST"])
    async def _register(request: Request) -> Response:  # noqa: D401
        if not service.config.enable_dcr:
            return _json_error(
                InvalidRequestError("Dynamic client registration is not enabled"), 403
            )
        try:
            metadata: Any = json.loads(await request.body())
        except (json.JSONDecodeError, UnicodeDecodeError):
            return _json_error(InvalidClientMetadataError("Invalid JSON in request body"))
        try:
            body = await run_in_threadpool(service.register_client, metadata)
        except OAuthError as exc:
            _LOG.info(
                "Client registration rejected error=%s correlation_id=%s",
                exc.error_code,
                _cid(request),
            )
            return _json_error(exc)

        _LOG.info(
            "Registered client_id=%s correlation_id=%s", body["client_id"], _cid(request)
        )
        return JSONResponse(body, status_code=201, headers=NO_STORE_HEADERS)
