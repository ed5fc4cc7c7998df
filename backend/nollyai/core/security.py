from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from typing import Any

import jwt
from fastapi import Depends, HTTPException, Request

from nollyai.core.settings import settings
from nollyai.services.cache import TTLCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CurrentUser:
    id: str
    email: str
    role: str

    @property
    def is_admin(self) -> bool:
        return (self.role or "").lower() == "admin"


def _normalize_email(value: str) -> str:
    return str(value or "").strip().lower()


def _is_admin_email(email: str) -> bool:
    normalized = _normalize_email(email)
    if not normalized:
        return False
    return normalized in (settings.admin_emails or set())


def _require_supabase_config() -> str:
    if not settings.supabase_url:
        raise HTTPException(status_code=500, detail="SUPABASE_URL is not configured")
    return settings.supabase_url


SUPABASE_JWT_ALGORITHMS = ["ES256", "RS256"]

# PyJWKClient keeps its own key cache; reuse one client per JWKS URL
_JWKS_CLIENTS = TTLCache(max_items=8, ttl_s=3600)


def _jwks_client(jwks_url: str) -> jwt.PyJWKClient:
    return _JWKS_CLIENTS.get_or_set(jwks_url, lambda: jwt.PyJWKClient(jwks_url))


def _decode_supabase_jwt(token: str) -> dict[str, Any]:
    """Verify a Supabase access token against the project JWKS."""
    auth_base = f"{_require_supabase_config().rstrip('/')}/auth/v1"
    try:
        key = _jwks_client(f"{auth_base}/.well-known/jwks.json").get_signing_key_from_jwt(token)
        claims = jwt.decode(
            token,
            key.key,
            algorithms=SUPABASE_JWT_ALGORITHMS,
            audience=settings.supabase_jwt_audience or "authenticated",
            issuer=settings.supabase_jwt_issuer or auth_base,
            options={"require": ["exp", "sub"]},
        )
    except jwt.PyJWTError as e:
        logger.info("bearer token rejected: %s", e)
        raise HTTPException(status_code=401, detail="Invalid bearer token")
    return dict(claims)


def _decide_role(*, email_is_admin: bool, claim_is_admin: bool) -> tuple[str, str]:
    if email_is_admin:
        return ("admin", "admin_emails")
    if claim_is_admin:
        return ("admin", "jwt_claim")
    return ("user", "default")


def _claims_admin(claims: dict[str, Any]) -> bool:
    # Supabase puts custom roles in app_metadata; some setups mint a top-level role
    app_meta = claims.get("app_metadata")
    roles = [claims.get("role")]
    if isinstance(app_meta, dict):
        roles.append(app_meta.get("role"))
    return any(str(r or "").strip().lower() == "admin" for r in roles)


def _get_bearer_token(request: Request) -> str:
    auth = request.headers.get("authorization") or ""
    if not auth.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")
    token = auth.split(" ", 1)[1].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    return token


def user_from_claims(claims: dict[str, Any]) -> CurrentUser:
    user_id = str(claims.get("sub") or "").strip()
    email = str(claims.get("email") or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")

    role, reason = _decide_role(email_is_admin=_is_admin_email(email), claim_is_admin=_claims_admin(claims))
    if role == "admin":
        logger.debug("admin access for %s via %s", user_id, reason)
    return CurrentUser(id=user_id, email=email, role=role)


def get_current_user(request: Request) -> CurrentUser:
    token = _get_bearer_token(request)
    return user_from_claims(_decode_supabase_jwt(token))


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


def _is_worker_token(token: str) -> bool:
    expected = (settings.job_worker_token or "").strip()
    if not expected:
        return False
    return hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8"))


def require_worker(request: Request) -> str:
    """Allow the configured worker token (cron) or an admin user."""
    token = _get_bearer_token(request)
    if _is_worker_token(token):
        return "worker"
    user = user_from_claims(_decode_supabase_jwt(token))
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user.id
