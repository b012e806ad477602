"""
Microsoft sign-in (authorization code flow, redirect URI on this backend).

`/authorize` sends the browser to the tenant's login page. `/callback`
exchanges the code for an ID token, verifies it against the tenant's JWKS,
and hands the browser back to the frontend with an app JWT. Every failure
ends as a redirect to `{FRONTEND_URL}/login?error=...`.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from typing import Any
from urllib.parse import urlencode

import httpx
import jwt
from fastapi import HTTPException, Request

from core.config import cors_origins, env_str
from tenants import service as tenants_service

from . import service

logger = logging.getLogger(__name__)

AUTHORITY_BASE_URL = tenants_service.AUTHORITY_BASE_URL
CALLBACK_PATH = "/api/auth/microsoft/callback"
SCOPES = "openid profile email"
TOKEN_EXCHANGE_TIMEOUT_S = 15.0
ID_TOKEN_ALGORITHMS = ["RS256"]

_jwks_clients: dict[str, jwt.PyJWKClient] = {}


class MicrosoftSignInError(Exception):
    """
    `error` is the value passed back to the login page.
    """

    def __init__(self, error: str) -> None:
        super().__init__(error)
        self.error = error


def frontend_url() -> str:
    return env_str("FRONTEND_URL", "").rstrip("/") or cors_origins()[0]


def backend_base_url(request: Request) -> str:
    configured = env_str("BACKEND_PUBLIC_URL", "")
    if configured:
        return configured.rstrip("/")
    scheme = request.headers.get("x-forwarded-proto") or request.url.scheme
    host = request.headers.get("x-forwarded-host") or request.headers.get("host") or request.url.netloc
    return f"{scheme}://{host}"


def callback_uri(request: Request) -> str:
    return f"{backend_base_url(request)}{CALLBACK_PATH}"


def login_redirect(error: str) -> str:
    return f"{frontend_url()}/login?{urlencode({'error': error})}"


def success_redirect(token: str) -> str:
    return f"{frontend_url()}/auth/callback?{urlencode({'token': token})}"


def encode_state(domain: str) -> str:
    raw = json.dumps({"domain": domain}).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_state(state: str) -> str:
    try:
        padded = state + "=" * (-len(state) % 4)
        data = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
    except ValueError as e:
        raise MicrosoftSignInError("invalid_state") from e
    domain = data.get("domain") if isinstance(data, dict) else None
    if not isinstance(domain, str) or not domain.strip():
        raise MicrosoftSignInError("invalid_state")
    return domain


def _tenant(config: dict) -> str:
    return str(config.get("authority_tenant") or config["domain"])


def authorize_url(config: dict, *, redirect_uri: str, state: str, login_hint: str | None = None) -> str:
    params = {
        "client_id": config["client_id"],
        "response_type": "code",
        "redirect_uri": redirect_uri,
        "response_mode": "query",
        "scope": SCOPES,
        "state": state,
    }
    if login_hint:
        params["login_hint"] = login_hint
    return f"{AUTHORITY_BASE_URL}/{_tenant(config)}/oauth2/v2.0/authorize?{urlencode(params)}"


async def exchange_code(
    config: dict,
    *,
    code: str,
    redirect_uri: str,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    url = f"{AUTHORITY_BASE_URL}/{_tenant(config)}/oauth2/v2.0/token"
    form = {
        "grant_type": "authorization_code",
        "client_id": config["client_id"],
        "client_secret": config["client_secret"],
        "code": code,
        "redirect_uri": redirect_uri,
    }
    try:
        async with httpx.AsyncClient(timeout=TOKEN_EXCHANGE_TIMEOUT_S, transport=transport) as client:
            resp = await client.post(url, data=form)
    except httpx.HTTPError as e:
        logger.warning("microsoft_token_exchange_failed domain=%s error=%s", config.get("domain"), e)
        raise MicrosoftSignInError("token_exchange_failed") from e
    if not resp.is_success:
        logger.warning(
            "microsoft_token_exchange_failed domain=%s status=%s body=%s",
            config.get("domain"),
            resp.status_code,
            resp.text[:200],
        )
        raise MicrosoftSignInError("token_exchange_failed")

    try:
        body = resp.json()
    except ValueError:
        body = None
    id_token = body.get("id_token") if isinstance(body, dict) else None
    if not id_token:
        raise MicrosoftSignInError("no_id_token")
    return str(id_token)


def _jwks_client(jwks_url: str) -> jwt.PyJWKClient:
    client = _jwks_clients.get(jwks_url)
    if client is None:
        client = _jwks_clients[jwks_url] = jwt.PyJWKClient(jwks_url)
    return client


async def signing_key(id_token: str, jwks_url: str) -> Any:
    # PyJWKClient fetches with blocking urllib.
    return await asyncio.to_thread(lambda: _jwks_client(jwks_url).get_signing_key_from_jwt(id_token).key)


async def verify_id_token(id_token: str) -> str:
    """
    Verify an Entra ID token and return the signed-in email.

    The audience must be the client id of an active tenant config, and the
    issuer must be a login.microsoftonline.com v2.0 endpoint; its JWKS is
    derived from the issuer.
    """
    try:
        claims = jwt.decode(id_token, options={"verify_signature": False})
    except jwt.PyJWTError as e:
        raise MicrosoftSignInError("Invalid token format") from e

    aud = claims.get("aud")
    client_id = aud[0] if isinstance(aud, list) and aud else aud
    if not client_id:
        raise MicrosoftSignInError("Token missing audience")
    if await tenants_service.get_by_client_id(str(client_id)) is None:
        raise MicrosoftSignInError("Unknown tenant or app registration")

    issuer = claims.get("iss") if isinstance(claims.get("iss"), str) else ""
    if not issuer.startswith(f"{AUTHORITY_BASE_URL}/") or not issuer.endswith("/v2.0"):
        raise MicrosoftSignInError("Invalid token issuer")
    jwks_url = f"{issuer[: -len('/v2.0')]}/discovery/v2.0/keys"

    try:
        key = await signing_key(id_token, jwks_url)
        payload = jwt.decode(
            id_token,
            key,
            algorithms=ID_TOKEN_ALGORITHMS,
            audience=str(client_id),
            issuer=issuer,
        )
    except jwt.ExpiredSignatureError as e:
        raise MicrosoftSignInError("Token expired") from e
    except jwt.PyJWTError as e:
        logger.warning("microsoft_id_token_rejected client_id=%s error=%s", client_id, e)
        raise MicrosoftSignInError(str(e) or "Token verification failed") from e

    email = payload.get("preferred_username") or payload.get("email") or payload.get("upn")
    if not email:
        raise MicrosoftSignInError("Token does not contain email")
    return str(email)


async def authorize_redirect(request: Request, domain: str | None, login_hint: str | None = None) -> str:
    normalized = tenants_service.normalize_domain(domain)
    if not normalized:
        return login_redirect("domain_required")
    config = await tenants_service.get_by_domain(normalized)
    if config is None:
        return login_redirect("tenant_not_configured")
    return authorize_url(
        config,
        redirect_uri=callback_uri(request),
        state=encode_state(normalized),
        login_hint=login_hint,
    )


async def callback_redirect(
    request: Request,
    *,
    code: str | None,
    state: str | None,
    error: str | None = None,
    error_description: str | None = None,
) -> str:
    if error:
        logger.warning("microsoft_sign_in_denied error=%s description=%s", error, error_description)
        return login_redirect(error_description or error)
    if not code or not state:
        return login_redirect("no_code")

    try:
        domain = decode_state(state)
        config = await tenants_service.get_by_domain(domain)
        if config is None:
            raise MicrosoftSignInError("tenant_not_found")
        id_token = await exchange_code(config, code=code, redirect_uri=callback_uri(request))
        email = await verify_id_token(id_token)
        token = await service.login_app_registration(email)
    except MicrosoftSignInError as e:
        return login_redirect(e.error)
    except HTTPException as e:
        return login_redirect(str(e.detail))
    return success_redirect(token)
