"""Authentication: resolving shoppers from bearer tokens, and the admin guard.

Shopper tokens are the hosted auth provider's access tokens; they are
resolved through ``GET {SUPABASE_URL}/auth/v1/user``.

Admin behavior matrix:
  ADMIN_API_KEY empty + DEBUG=true             → allow (local dev convenience)
  ADMIN_API_KEY set + token equals it          → allow
  token belongs to a user with the admin role  → allow
  ADMIN_API_KEY empty + DEBUG=false + no token → 403 Forbidden
  token missing or unknown                     → 401 Unauthorized
  known user without the admin role            → 403 Forbidden
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ValidationError

from touchtrial.config import settings
from touchtrial.store.base import StoreError

log = logging.getLogger("touchtrial.auth")

_bearer_scheme = HTTPBearer(auto_error=False)


class AuthUser(BaseModel):
    id: str
    email: Optional[str] = None
    phone: Optional[str] = None


class AuthUnavailable(Exception):
    """The auth provider could not be reached or answered unexpectedly."""


class AuthProvider:
    """Looks up the user behind an access token."""

    def __init__(
        self,
        auth_url: str,
        api_key: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._auth_url = auth_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport

    async def get_user(self, token: str) -> Optional[AuthUser]:
        """Return the user for ``token``, or None if the token is rejected."""
        if not token:
            return None
        headers = {"Authorization": f"Bearer {token}", "apikey": self._api_key}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.get(f"{self._auth_url}/user", headers=headers)
        except httpx.HTTPError as e:
            raise AuthUnavailable(str(e)) from e

        if resp.status_code in (401, 403):
            return None
        if resp.status_code >= 400:
            raise AuthUnavailable(f"Auth provider returned {resp.status_code}")
        try:
            return AuthUser.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            raise AuthUnavailable("Malformed user response") from e


async def _resolve_user(request: Request, token: str) -> Optional[AuthUser]:
    auth: AuthProvider = request.app.state.services.auth
    try:
        return await auth.get_user(token)
    except AuthUnavailable as e:
        log.error("Auth lookup failed: %s", e)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Authentication service unavailable.",
        )


async def get_optional_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> Optional[AuthUser]:
    """FastAPI dependency: the signed-in shopper, or None for guests."""
    if credentials is None:
        return None
    return await _resolve_user(request, credentials.credentials)


async def require_user(
    user: Optional[AuthUser] = Depends(get_optional_user),
) -> AuthUser:
    """FastAPI dependency: a signed-in shopper is required."""
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Sign in to continue.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def require_admin(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> None:
    """FastAPI dependency: protect admin endpoints."""
    key = settings.admin_api_key

    if not key and settings.debug:
        return  # Local dev: allow without auth

    if key and credentials is not None and credentials.credentials == key:
        return

    if credentials is None:
        if not key:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Admin API key not configured. Set ADMIN_API_KEY in .env.",
            )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing admin token.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = await _resolve_user(request, credentials.credentials)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing admin token.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        is_admin = await request.app.state.services.store.is_admin(user.id)
    except StoreError as e:
        log.error("Role lookup failed for %s: %s", user.id, e)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Role lookup failed.",
        )
    if not is_admin:
        log.warning("Non-admin user %s attempted an admin action", user.id)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required.",
        )
