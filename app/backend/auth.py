"""Identity-provider collaborator.

Accounts, passwords and sessions are owned by Supabase Auth. This service only
asks it "who holds this access token" and forwards sign-up / sign-in /
sign-out. A local ``users`` row mirrors each account for ownership lookups.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import httpx
from fastapi import Depends, HTTPException, Request


logger = logging.getLogger("uvicorn.error")
DEFAULT_TIMEOUT_SECONDS = 10.0
ACCESS_TOKEN_COOKIE = "access_token"


class AuthProviderError(RuntimeError):
    pass


class AuthUnavailable(AuthProviderError):
    pass


class AuthRejected(ValueError):
    pass


@dataclass
class AuthIdentity:
    user_id: str
    email: str
    access_token: Optional[str] = None


class AuthClient(Protocol):
    provider_name: str

    def get_user(self, access_token: str) -> Optional[AuthIdentity]:
        pass

    def sign_up(self, email: str, password: str) -> AuthIdentity:
        pass

    def sign_in(self, email: str, password: str) -> AuthIdentity:
        pass

    def sign_out(self, access_token: str) -> None:
        pass


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text or ""
    if not isinstance(payload, dict):
        return ""
    return str(
        payload.get("msg")
        or payload.get("error_description")
        or payload.get("message")
        or payload.get("error")
        or ""
    )


def _identity_from_payload(payload: Dict[str, Any], access_token: Optional[str] = None) -> AuthIdentity:
    user = payload.get("user") if isinstance(payload.get("user"), dict) else payload
    user_id = str(user.get("id") or "").strip()
    if not user_id:
        raise AuthProviderError("Auth provider response did not contain a user id.")
    return AuthIdentity(
        user_id=user_id,
        email=str(user.get("email") or ""),
        access_token=access_token or payload.get("access_token"),
    )


class SupabaseAuthClient:
    provider_name = "supabase"

    def __init__(self, base_url: str, anon_key: str, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self._base_url = base_url.rstrip("/") + "/auth/v1"
        self._anon_key = anon_key
        self._timeout_seconds = timeout_seconds

    def _headers(self, access_token: Optional[str] = None) -> Dict[str, str]:
        headers = {"apikey": self._anon_key, "Content-Type": "application/json"}
        headers["Authorization"] = f"Bearer {access_token or self._anon_key}"
        return headers

    def _send(self, method: str, path: str, *, access_token: Optional[str] = None, **kwargs) -> httpx.Response:
        try:
            return httpx.request(
                method,
                self._base_url + path,
                headers=self._headers(access_token),
                timeout=self._timeout_seconds,
                **kwargs,
            )
        except httpx.TimeoutException as exc:
            raise AuthProviderError(
                f"Auth provider timed out after {int(self._timeout_seconds)} seconds."
            ) from exc
        except httpx.HTTPError as exc:
            raise AuthProviderError(f"Failed to call auth provider: {exc}") from exc

    def get_user(self, access_token: str) -> Optional[AuthIdentity]:
        response = self._send("GET", "/user", access_token=access_token)
        if response.status_code in (401, 403):
            return None
        if response.status_code >= 400:
            raise AuthProviderError(f"Auth provider error {response.status_code}: {_error_detail(response)}")
        return _identity_from_payload(response.json(), access_token=access_token)

    def _credentials_call(self, path: str, email: str, password: str, **kwargs) -> AuthIdentity:
        response = self._send("POST", path, json={"email": email, "password": password}, **kwargs)
        if response.status_code in (400, 401, 422):
            raise AuthRejected(_error_detail(response) or "Invalid credentials.")
        if response.status_code >= 400:
            raise AuthProviderError(f"Auth provider error {response.status_code}: {_error_detail(response)}")
        return _identity_from_payload(response.json())

    def sign_up(self, email: str, password: str) -> AuthIdentity:
        return self._credentials_call("/signup", email, password)

    def sign_in(self, email: str, password: str) -> AuthIdentity:
        return self._credentials_call("/token", email, password, params={"grant_type": "password"})

    def sign_out(self, access_token: str) -> None:
        response = self._send("POST", "/logout", access_token=access_token)
        if response.status_code >= 400 and response.status_code not in (401, 403):
            raise AuthProviderError(f"Auth provider error {response.status_code}: {_error_detail(response)}")


class DisabledAuthClient:
    """Used when no identity provider is configured: nobody is signed in."""

    provider_name = "disabled"

    def get_user(self, access_token: str) -> Optional[AuthIdentity]:
        return None

    def sign_up(self, email: str, password: str) -> AuthIdentity:
        raise AuthUnavailable("Authentication is not configured (set SUPABASE_URL and SUPABASE_ANON_KEY).")

    def sign_in(self, email: str, password: str) -> AuthIdentity:
        raise AuthUnavailable("Authentication is not configured (set SUPABASE_URL and SUPABASE_ANON_KEY).")

    def sign_out(self, access_token: str) -> None:
        return None


def build_auth_client() -> AuthClient:
    base_url = os.getenv("SUPABASE_URL", "").strip()
    anon_key = os.getenv("SUPABASE_ANON_KEY", "").strip()
    if not base_url or not anon_key:
        logger.warning("auth_disabled reason=missing_supabase_config")
        return DisabledAuthClient()
    timeout_seconds = float(os.getenv("AUTH_TIMEOUT_SECONDS", str(DEFAULT_TIMEOUT_SECONDS)))
    return SupabaseAuthClient(base_url=base_url, anon_key=anon_key, timeout_seconds=timeout_seconds)


def extract_access_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    cookie = request.cookies.get(ACCESS_TOKEN_COOKIE, "").strip()
    return cookie or None


def get_auth_client(request: Request) -> AuthClient:
    return request.app.state.auth_client


def resolve_identity(request: Request, auth_client: AuthClient) -> Optional[AuthIdentity]:
    access_token = extract_access_token(request)
    if not access_token:
        return None
    try:
        return auth_client.get_user(access_token)
    except AuthProviderError as exc:
        logger.warning("auth_check_failed error=%s", exc)
        raise HTTPException(status_code=503, detail="Authentication provider unavailable.") from exc


def is_authenticated(request: Request, auth_client: AuthClient) -> bool:
    return resolve_identity(request, auth_client) is not None


def require_user(
    request: Request,
    auth_client: AuthClient = Depends(get_auth_client),
) -> AuthIdentity:
    identity = resolve_identity(request, auth_client)
    if identity is None:
        raise HTTPException(status_code=401, detail="Not authenticated.")
    return identity
