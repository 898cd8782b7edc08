"""OIDC bearer authentication for dashboard users.

Provides:
- OidcSettings: issuer/audience/JWKS location from the environment
- verify_token(): validates an RS256 JWT and returns its subject
- get_current_user(): FastAPI dependency resolving the CRM user
"""

from __future__ import annotations

import os
import threading
import time
from dataclasses import dataclass
from typing import Any

import jwt
import requests
from fastapi import HTTPException, Request

from batepapo.infra.db import txn
from batepapo.infra.repositories.users_repository import get_user_by_subject
from batepapo.observability.logging import get_logger
from batepapo.observability.redaction import safe_log_context

logger = get_logger(__name__)

JWKS_CACHE_TTL = 600  # seconds


@dataclass
class CurrentUser:
    """Authenticated user context."""

    id: str
    external_subject: str
    email: str | None
    name: str | None


@dataclass(frozen=True)
class OidcSettings:
    issuer: str | None
    audience: str | None
    jwks_url: str | None
    authorized_parties: tuple[str, ...] = ()

    @classmethod
    def from_env(cls) -> "OidcSettings":
        parties = os.environ.get("OIDC_AUTHORIZED_PARTIES", "")
        return cls(
            issuer=os.environ.get("OIDC_ISSUER"),
            audience=os.environ.get("OIDC_AUDIENCE"),
            jwks_url=os.environ.get("OIDC_JWKS_URL"),
            authorized_parties=tuple(p.strip() for p in parties.split(",") if p.strip()),
        )

    @property
    def configured(self) -> bool:
        return bool(self.issuer and self.audience and self.jwks_url)


def _fetch_jwks(jwks_url: str) -> dict[str, Any]:
    resp = requests.get(jwks_url, timeout=10)
    resp.raise_for_status()
    return resp.json()


class _JwksCache:
    """Signing keys by URL, refreshed after JWKS_CACHE_TTL or on demand."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._keys: dict[str, Any] | None = None
        self._url: str | None = None
        self._fetched_at = 0.0

    def clear(self) -> None:
        with self._lock:
            self._keys = None
            self._url = None
            self._fetched_at = 0.0

    def get(self, jwks_url: str, *, refresh: bool = False) -> dict[str, Any]:
        with self._lock:
            now = time.time()
            fresh = (
                self._keys is not None
                and self._url == jwks_url
                and (now - self._fetched_at) < JWKS_CACHE_TTL
            )
            if fresh and not refresh:
                return self._keys

            try:
                keys = _fetch_jwks(jwks_url)
            except requests.RequestException:
                logger.warning("jwks fetch failed")
                raise HTTPException(status_code=503, detail="Auth temporarily unavailable")

            self._keys = keys
            self._url = jwks_url
            self._fetched_at = now
            return keys


_jwks_cache = _JwksCache()


def _find_key(jwks: dict[str, Any], kid: str) -> dict[str, Any] | None:
    for key in jwks.get("keys", []):
        if key.get("kid") == kid:
            return key
    return None


def _decode(token: str, jwk: dict[str, Any], settings: OidcSettings) -> dict[str, Any]:
    try:
        public_key = jwt.algorithms.RSAAlgorithm.from_jwk(jwk)
    except (ValueError, TypeError, jwt.InvalidKeyError):
        raise HTTPException(status_code=401, detail="Invalid token")

    return jwt.decode(
        token,
        public_key,
        algorithms=["RS256"],
        issuer=settings.issuer,
        audience=settings.audience,
        options={"require": ["exp", "iss", "aud", "sub"]},
    )


def verify_token(token: str, settings: OidcSettings | None = None) -> str:
    """Verify a JWT and return its subject claim.

    A missing key id or a bad signature triggers one JWKS refresh, to follow
    key rotation.

    Raises:
        HTTPException: 401 for any invalid token, 503 if the JWKS is unreachable.
    """
    settings = settings or OidcSettings.from_env()
    if not settings.configured:
        raise HTTPException(status_code=401, detail="OIDC not configured")

    try:
        kid = jwt.get_unverified_header(token).get("kid")
    except jwt.exceptions.DecodeError:
        raise HTTPException(status_code=401, detail="Invalid token")
    if not kid:
        raise HTTPException(status_code=401, detail="Invalid token")

    jwk = _find_key(_jwks_cache.get(settings.jwks_url), kid)
    refreshed = False
    if jwk is None:
        jwk = _find_key(_jwks_cache.get(settings.jwks_url, refresh=True), kid)
        refreshed = True
    if jwk is None:
        raise HTTPException(status_code=401, detail="Invalid token")

    try:
        try:
            claims = _decode(token, jwk, settings)
        except jwt.InvalidSignatureError:
            if refreshed:
                raise
            jwk = _find_key(_jwks_cache.get(settings.jwks_url, refresh=True), kid)
            if jwk is None:
                raise HTTPException(status_code=401, detail="Invalid token")
            claims = _decode(token, jwk, settings)
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    if settings.authorized_parties and "azp" in claims:
        if claims["azp"] not in settings.authorized_parties:
            raise HTTPException(status_code=401, detail="Invalid token")

    sub = claims.get("sub")
    if not sub:
        raise HTTPException(status_code=401, detail="Invalid token")
    return sub


def _extract_bearer_token(request: Request) -> str:
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        raise HTTPException(status_code=401, detail="Missing authorization header")

    parts = auth_header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(status_code=401, detail="Invalid authorization header")

    return parts[1]


def _get_user_from_db(external_subject: str) -> CurrentUser | None:
    with txn() as cur:
        row = get_user_by_subject(cur, external_subject)
    if row is None:
        return None
    return CurrentUser(id=str(row[0]), external_subject=row[1], email=row[2], name=row[3])


def get_current_user(request: Request) -> CurrentUser:
    """FastAPI dependency: the authenticated CRM user.

    Raises:
        HTTPException: 401 if the token is missing or invalid, 403 if no user
            is registered for the token subject.
    """
    token = _extract_bearer_token(request)
    sub = verify_token(token)

    user = _get_user_from_db(sub)
    if user is None:
        logger.info(
            "authenticated subject has no user",
            extra={"extra_fields": safe_log_context(reason="unknown_subject")},
        )
        raise HTTPException(status_code=403, detail="User not found")

    return user

