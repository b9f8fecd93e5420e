"""
OAuth2 endpoints for MCP server using Starlette.

Implements:
- Authorization Server Metadata (RFC 8414)
- Protected Resource Metadata (RFC 9728)
- Dynamic Client Registration (RFC 7591)
- Authorization endpoint with Jinja2 login form
- Token endpoint (authorization_code and refresh_token grants)
- Token Introspection (RFC 7662) and Revocation (RFC 7009)
"""

import logging
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlencode

from jinja2 import Environment, FileSystemLoader, select_autoescape
from pydantic import BaseModel, ValidationError
from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, RedirectResponse

from mcp_oauth_server.auth.oauth2_server import OAuth2Server
from mcp_oauth_server.core import OAuthError, UnsupportedResponseTypeError

logger = logging.getLogger(__name__)

template_dir = Path(__file__).parent / "templates"
jinja_env = Environment(
    loader=FileSystemLoader(str(template_dir)),
    autoescape=select_autoescape(["html"]),
)

NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}

AUTHORIZE_PARAMS = (
    "client_id",
    "redirect_uri",
    "response_type",
    "scope",
    "state",
    "code_challenge",
    "code_challenge_method",
)


# Pydantic models for request validation
class ClientRegistrationRequest(BaseModel):
    """Dynamic Client Registration request (RFC 7591)."""

    client_name: str
    redirect_uris: List[str]
    scope: Optional[str] = None
    scopes: Optional[List[str]] = None
    token_endpoint_auth_method: str = "none"

    def requested_scopes(self) -> Optional[List[str]]:
        if self.scopes:
            return self.scopes
        if self.scope:
            return self.scope.split()
        return None

    @property
    def confidential(self) -> bool:
        return self.token_endpoint_auth_method != "none"


def render_template(template_name: str, context: dict, status_code: int = 200) -> HTMLResponse:
    """Render Jinja2 template."""
    template = jinja_env.get_template(template_name)
    html_content = template.render(**context)
    return HTMLResponse(content=html_content, status_code=status_code)


def oauth_error_response(error: OAuthError) -> JSONResponse:
    return JSONResponse(error.to_dict(), status_code=error.status_code, headers=NO_STORE)


def server_error_response(exc: Exception) -> JSONResponse:
    # Internal details stay in the log, never in the response
    logger.exception("Unhandled error in OAuth endpoint: %s", exc)
    return JSONResponse(
        {"error": "server_error", "error_description": "Internal server error"},
        status_code=500,
    )


def error_redirect(redirect_uri: str, error: OAuthError, state: Optional[str]) -> RedirectResponse:
    """Report an authorization error back to a trusted redirect URI."""
    params = {"error": error.error, "error_description": error.description}
    if state:
        params["state"] = state
    separator = "&" if "?" in redirect_uri else "?"
    return RedirectResponse(url=f"{redirect_uri}{separator}{urlencode(params)}", status_code=302)


def code_redirect(redirect_uri: str, code: str, state: Optional[str], status_code: int) -> RedirectResponse:
    params = {"code": code}
    if state:
        params["state"] = state
    separator = "&" if "?" in redirect_uri else "?"
    return RedirectResponse(url=f"{redirect_uri}{separator}{urlencode(params)}", status_code=status_code)


def _check_client_and_redirect(oauth2_server: OAuth2Server, params: dict) -> Optional[JSONResponse]:
    """Errors that must not be redirected, because the redirect URI is not trusted yet."""
    client = oauth2_server.get_client(params.get("client_id") or "")
    if client is None:
        return JSONResponse(
            {"error": "invalid_client", "error_description": "Unknown client_id"},
            status_code=400,
        )
    if params.get("redirect_uri") not in client.redirect_uris:
        return JSONResponse(
            {
                "error": "invalid_request",
                "error_description": "redirect_uri does not match a registered URI",
            },
            status_code=400,
        )
    return None


def _issue_code(oauth2_server: OAuth2Server, params: dict, user_id: str, status_code: int):
    redirect_uri = params["redirect_uri"]
    state = params.get("state")

    if params.get("response_type") != "code":
        return error_redirect(
            redirect_uri,
            UnsupportedResponseTypeError("Only response_type=code is supported"),
            state,
        )

    try:
        result = oauth2_server.authorize(
            client_id=params["client_id"],
            redirect_uri=redirect_uri,
            scopes=params.get("scope"),
            code_challenge=params.get("code_challenge") or "",
            code_challenge_method=params.get("code_challenge_method"),
            user_id=user_id,
        )
    except OAuthError as e:
        logger.info("Authorization request rejected: %s", e)
        return error_redirect(redirect_uri, e, state)

    return code_redirect(redirect_uri, result["code"], state, status_code)


# OAuth2 endpoint handlers
async def authorization_server_metadata(request: Request, oauth2_server: OAuth2Server):
    """OAuth 2.0 Authorization Server Metadata (RFC 8414)."""
    return JSONResponse(oauth2_server.get_authorization_server_metadata())


async def protected_resource_metadata(
    request: Request, oauth2_server: OAuth2Server, resource_url: str
):
    """Protected Resource Metadata (RFC 9728)."""
    return JSONResponse(oauth2_server.get_protected_resource_metadata(resource_url))


async def register_client(request: Request, oauth2_server: OAuth2Server):
    """Dynamic Client Registration (RFC 7591)."""
    try:
        body = await request.json()
        req = ClientRegistrationRequest(**body)

        response = oauth2_server.register_client(
            client_name=req.client_name,
            redirect_uris=req.redirect_uris,
            scopes=req.requested_scopes(),
            confidential=req.confidential,
        )
        return JSONResponse(response, status_code=201, headers=NO_STORE)
    except OAuthError as e:
        return oauth_error_response(e)
    except (ValidationError, ValueError, TypeError) as e:
        return JSONResponse(
            {"error": "invalid_request", "error_description": f"Malformed registration: {e}"},
            status_code=400,
        )
    except Exception as e:
        return server_error_response(e)


async def authorize_get(request: Request, oauth2_server: OAuth2Server):
    """Authorization endpoint (GET) - issues a code for a logged-in user, else shows login form."""
    try:
        params = {name: request.query_params.get(name) for name in AUTHORIZE_PARAMS}

        rejection = _check_client_and_redirect(oauth2_server, params)
        if rejection is not None:
            return rejection

        user_id = request.session.get("user_id")
        if user_id:
            return _issue_code(oauth2_server, params, user_id, status_code=302)

        client = oauth2_server.get_client(params["client_id"])
        return render_template(
            "authorize.html",
            {
                "client_name": client.client_name,
                "scopes": (params["scope"] or "").split(),
                "params": {k: v for k, v in params.items() if v is not None},
                "error": None,
            },
        )

    except Exception as e:
        return server_error_response(e)


async def authorize_post(request: Request, oauth2_server: OAuth2Server):
    """Authorization endpoint (POST) - processes login form."""
    try:
        form = await request.form()
        params = {name: form.get(name) for name in AUTHORIZE_PARAMS}

        rejection = _check_client_and_redirect(oauth2_server, params)
        if rejection is not None:
            return rejection

        user = oauth2_server.authenticate_user(
            form.get("username") or "", form.get("password") or ""
        )
        if user is None:
            client = oauth2_server.get_client(params["client_id"])
            return render_template(
                "authorize.html",
                {
                    "client_name": client.client_name,
                    "scopes": (params["scope"] or "").split(),
                    "params": {k: v for k, v in params.items() if v is not None},
                    "error": "Invalid username or password.",
                },
                status_code=401,
            )

        request.session["user_id"] = user.user_id
        return _issue_code(oauth2_server, params, user.user_id, status_code=303)

    except Exception as e:
        return server_error_response(e)


async def token_endpoint(request: Request, oauth2_server: OAuth2Server):
    """Token endpoint - authorization_code and refresh_token grants."""
    try:
        form = await request.form()
        params = {key: value for key, value in form.items() if isinstance(value, str)}
        grant_type = params.pop("grant_type", None)

        try:
            response = oauth2_server.token(grant_type, **params)
        except OAuthError as e:
            logger.info("Token request rejected: %s", e)
            return oauth_error_response(e)

        return JSONResponse(response, headers=NO_STORE)

    except Exception as e:
        return server_error_response(e)


async def introspect_endpoint(request: Request, oauth2_server: OAuth2Server):
    """Token Introspection (RFC 7662) - always 200, inactive for unknown tokens."""
    try:
        form = await request.form()
        return JSONResponse(oauth2_server.introspect(form.get("token")), headers=NO_STORE)
    except Exception as e:
        return server_error_response(e)


async def revoke_endpoint(request: Request, oauth2_server: OAuth2Server):
    """Token Revocation (RFC 7009) - always 200, even for unknown tokens."""
    try:
        form = await request.form()
        oauth2_server.revoke(form.get("token"), form.get("token_type_hint"))
        return JSONResponse({}, status_code=200)
    except Exception as e:
        return server_error_response(e)
