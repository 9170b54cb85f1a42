"""
Caller identity via Supabase Auth.

The access token comes from the ``Authorization: Bearer`` header, falling back
to the ``sb-access-token`` cookie. It is introspected with
``GET <SUPABASE_URL>/auth/v1/user`` using the project's public anon key.
"""

import logging
from typing import Optional

import httpx
from fastapi import Depends, Request
from pydantic import BaseModel

from bizcard_svc.config import Settings, get_settings

logger = logging.getLogger(__name__)

ACCESS_TOKEN_COOKIE = "sb-access-token"


class AuthError(Exception):
    """The caller could not be resolved to a user. Maps to 401."""

    def __init__(self, message: str = "Unauthorized", from_provider: bool = False) -> None:
        super().__init__(message)
        self.message = message
        self.from_provider = from_provider


class AuthNotConfigured(Exception):
    pass


class AuthenticatedUser(BaseModel):
    id: str
    email: Optional[str] = None


def extract_access_token(request: Request) -> Optional[str]:
    authorization = request.headers.get("Authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return request.cookies.get(ACCESS_TOKEN_COOKIE) or None


def _provider_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        for key in ("msg", "message", "error_description", "error"):
            if isinstance(body.get(key), str) and body[key]:
                return body[key]
    return f"HTTP {response.status_code}"


class SupabaseAuthClient:
    def __init__(
        self,
        base_url: Optional[str],
        anon_key: Optional[str],
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.anon_key = anon_key
        self.timeout = timeout
        self._transport = transport

    def get_user(self, access_token: Optional[str]) -> AuthenticatedUser:
        """
        Resolve an access token to the user it belongs to.

        :raises AuthError: no token, rejected token, or provider unreachable.
        :raises AuthNotConfigured: SUPABASE_URL or SUPABASE_ANON_KEY missing.
        """
        if not access_token:
            raise AuthError()
        if not self.base_url or not self.anon_key:
            raise AuthNotConfigured("Supabase auth is not configured")

        headers = {"apikey": self.anon_key, "Authorization": f"Bearer {access_token}"}
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.get(f"{self.base_url}/auth/v1/user", headers=headers)
        except httpx.HTTPError as e:
            logger.error("Auth provider request failed: %s", e, exc_info=True)
            raise AuthError(str(e), from_provider=True) from e

        if response.status_code != 200:
            message = _provider_message(response)
            logger.info("Auth provider rejected token: status=%s message=%s", response.status_code, message)
            raise AuthError(message, from_provider=True)

        try:
            data = response.json()
        except ValueError:
            raise AuthError("Malformed auth provider response", from_provider=True)
        if not isinstance(data, dict) or not data.get("id"):
            raise AuthError()
        return AuthenticatedUser(id=data["id"], email=data.get("email") or None)


def get_auth_client(settings: Settings = Depends(get_settings)) -> SupabaseAuthClient:
    return SupabaseAuthClient(settings.supabase_url, settings.supabase_anon_key)
