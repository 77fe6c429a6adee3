from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Dict, List, Optional

import httpx
import jwt
from fastapi import Header, HTTPException
from jwt import PyJWKClient

from .config import CONFIG
from .errors import AuthenticationRequired, AuthorizationDenied, SourceFetchError

logger = logging.getLogger(__name__)


@lru_cache
def _supabase_config() -> tuple[str, str]:
    url = os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL")
    anon_key = os.getenv("SUPABASE_ANON_KEY") or os.getenv("NEXT_PUBLIC_SUPABASE_ANON_KEY")
    if not url or not anon_key:
        raise RuntimeError("Missing SUPABASE_URL/SUPABASE_ANON_KEY for API access.")
    return url.rstrip("/"), anon_key


@lru_cache
def _jwks_url() -> str:
    base_url, _ = _supabase_config()
    return os.getenv("SUPABASE_JWKS_URL") or f"{base_url}/auth/v1/keys"


@lru_cache
def _jwks_client() -> PyJWKClient:
    return PyJWKClient(_jwks_url())


def _parse_bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise AuthenticationRequired("Missing authorization token.")
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AuthenticationRequired("Invalid authorization token.")
    return parts[1]


def _require_claim(value: Any, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise AuthenticationRequired(f"Missing {label}.")
    return value.strip()


async def _describe_response(resp: httpx.Response) -> str:
    try:
        return resp.text or "<empty response>"
    except (httpx.ResponseNotRead, UnicodeDecodeError):
        return "<unable to read response>"


async def _raise_supabase_error(
    resp: httpx.Response,
    action: str,
    *,
    object_label: Optional[str] = None,
) -> None:
    detail = await _describe_response(resp)
    label = f" ({object_label})" if object_label else ""
    status = resp.status_code if resp.status_code >= 400 else 500
    raise HTTPException(
        status_code=status,
        detail=f"Supabase {action} failed{label}: status={resp.status_code}, body={detail}",
    )


async def _verify_access_token(token: str) -> Dict[str, Any]:
    audience = os.getenv("SUPABASE_JWT_AUD", "authenticated")
    options = {"verify_aud": bool(audience)}
    try:
        signing_key = _jwks_client().get_signing_key_from_jwt(token)
        return jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256"],
            audience=audience if audience else None,
            options=options,
        )
    except jwt.PyJWTError:
        logger.debug("jwks verification failed; trying fallbacks")

    secret = os.getenv("SUPABASE_JWT_SECRET")
    if secret:
        try:
            return jwt.decode(
                token,
                secret,
                algorithms=["HS256"],
                audience=audience if audience else None,
                options=options,
            )
        except jwt.PyJWTError as exc:
            raise AuthenticationRequired("Invalid or expired token.") from exc

    base_url, anon_key = _supabase_config()
    async with httpx.AsyncClient(timeout=10.0) as client:
        resp = await client.get(
            f"{base_url}/auth/v1/user",
            headers={
                "Authorization": f"Bearer {token}",
                "apikey": anon_key,
            },
        )
    if resp.status_code >= 400:
        raise AuthenticationRequired("Invalid or expired token.")
    data = resp.json() if resp.content else {}
    user_id = data.get("id")
    if not user_id:
        raise AuthenticationRequired("Invalid or expired token.")
    return {"sub": user_id, "email": data.get("email")}


@dataclass
class SupabaseClient:
    """Read-only PostgREST client acting with the caller's access token."""

    base_url: str
    anon_key: str
    access_token: str
    timeout: float = field(default_factory=lambda: CONFIG.http_timeout_seconds)

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {self.access_token}",
            "Accept": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    async def request(
        self,
        method: str,
        table: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        url = f"{self.base_url}/rest/v1/{table}"
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.request(
                method,
                url,
                params=params,
                headers=self._headers(headers),
            )

    async def select(self, table: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        resp = await self.request("GET", table, params=params)
        if resp.status_code >= 400:
            await _raise_supabase_error(resp, "select", object_label=f"table={table}")
        return resp.json()


@dataclass
class AuthContext:
    """Resolved principal and family scope for one request."""

    user_id: str
    user_email: Optional[str]
    family_id: str
    access_token: str
    supabase: SupabaseClient
    memberships: List[Dict[str, Any]]


async def get_auth_context(
    authorization: Optional[str] = Header(None),
    family_id: Optional[str] = Header(None, alias="X-Nugget-Family-Id"),
) -> AuthContext:
    token = _parse_bearer_token(authorization)
    payload = await _verify_access_token(token)
    user_id = _require_claim(payload.get("sub"), "user_id")
    user_email = payload.get("email") if isinstance(payload, dict) else None

    base_url, anon_key = _supabase_config()
    supabase = SupabaseClient(base_url=base_url, anon_key=anon_key, access_token=token)

    try:
        memberships = await supabase.select(
            "family_members",
            params={
                "select": "family_id,user_id,role,is_primary",
                "user_id": f"eq.{user_id}",
            },
        )
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning(
            "family membership lookup failed",
            extra={"user_id": user_id, "error_type": type(exc).__name__},
        )
        raise SourceFetchError("family_members") from exc

    membership_family_ids = {row.get("family_id") for row in memberships if row.get("family_id")}
    primary_family_id = next(
        (row.get("family_id") for row in memberships if row.get("is_primary")), None
    )

    if not membership_family_ids:
        raise AuthenticationRequired("No family is associated with this account.")

    if family_id:
        resolved_family_id = family_id.strip()
        if resolved_family_id not in membership_family_ids:
            raise AuthorizationDenied("Family access denied.")
    elif primary_family_id:
        resolved_family_id = primary_family_id
    elif len(membership_family_ids) == 1:
        resolved_family_id = next(iter(membership_family_ids))
    else:
        raise HTTPException(
            status_code=409,
            detail={"error": "family_required", "count": len(membership_family_ids)},
        )

    return AuthContext(
        user_id=user_id,
        user_email=user_email,
        family_id=resolved_family_id,
        access_token=token,
        supabase=supabase,
        memberships=memberships,
    )
