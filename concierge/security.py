from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import Header, HTTPException, Request

from .config import AuthConfig
from .models import CustomerProfile

SCOPE_SESSION = "session"
SCOPE_APPROVAL = "approval"

_IDENTITY_CLAIMS = ("customerId", "email", "firstName", "lastName")


def _jwt_secret(cfg: AuthConfig) -> str:
    secret = (cfg.jwt_secret or "").strip()
    if not secret:
        raise HTTPException(status_code=500, detail="JWT not configured")
    return secret


def token_ttl(cfg: AuthConfig, scope: str) -> timedelta:
    if scope == SCOPE_APPROVAL:
        return timedelta(minutes=cfg.approval_token_ttl_minutes)
    return timedelta(minutes=cfg.session_ttl_minutes)


def identity_claims(profile: CustomerProfile) -> Dict[str, Any]:
    return {
        "customerId": profile.id,
        "email": profile.email,
        "firstName": profile.first_name,
        "lastName": profile.last_name,
    }


def create_access_token(
    cfg: AuthConfig,
    *,
    claims: Dict[str, Any],
    scope: str = SCOPE_SESSION,
    extra: Optional[Dict[str, Any]] = None,
    ttl: Optional[timedelta] = None,
) -> str:
    now = datetime.now(timezone.utc)
    lifetime = ttl if ttl is not None else token_ttl(cfg, scope)
    payload: Dict[str, Any] = {
        "sub": str(claims.get("customerId") or ""),
        "scope": scope,
        "iss": cfg.jwt_issuer,
        "aud": cfg.jwt_audience,
        "iat": int(now.timestamp()),
        "exp": int((now + lifetime).timestamp()),
    }
    payload.update({k: claims.get(k) for k in _IDENTITY_CLAIMS})
    if extra:
        payload.update(extra)
    return jwt.encode(payload, _jwt_secret(cfg), algorithm="HS256")


def decode_access_token(cfg: AuthConfig, token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(
            token,
            _jwt_secret(cfg),
            algorithms=["HS256"],
            audience=cfg.jwt_audience,
            issuer=cfg.jwt_issuer,
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


def parse_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.strip().split(" ", 1)
    if len(parts) != 2:
        return None
    scheme, token = parts[0].strip().lower(), parts[1].strip()
    if scheme != "bearer" or not token:
        return None
    return token


def refresh_session_token(cfg: AuthConfig, payload: Dict[str, Any]) -> str:
    """Re-mint a verified session token with the same identity and a fresh expiry.

    Approval-scoped tokens are single-purpose and are rejected with 403.
    """
    scope = str(payload.get("scope") or "")
    if scope != SCOPE_SESSION:
        raise HTTPException(status_code=403, detail="Token cannot be refreshed")
    return create_access_token(cfg, claims=payload, scope=SCOPE_SESSION)


def require_bearer(
    request: Request,
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> Dict[str, Any]:
    token = parse_bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    payload = decode_access_token(request.app.state.settings.auth, token)
    if not str(payload.get("sub") or "").strip():
        raise HTTPException(status_code=401, detail="Invalid token")
    return payload


def require_session(
    request: Request,
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> Dict[str, Any]:
    payload = require_bearer(request, authorization)
    if payload.get("scope") != SCOPE_SESSION:
        raise HTTPException(status_code=403, detail="Session token required")
    return payload
