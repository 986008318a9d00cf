from __future__ import annotations

import logging
from typing import Final

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from core.errors import auth_invalid_token, auth_role_mismatch
from core.settings import get_settings
from security.principal import AuthPrincipal

logger = logging.getLogger(__name__)

token_auth_scheme = HTTPBearer(auto_error=True)
ALGORITHM: Final[str] = "HS256"
AUTH_ROLES: Final[tuple[str, ...]] = ("client", "agent", "tax_office", "admin")
LEGACY_ROLE_ALIASES: Final[dict[str, str]] = {"tax-office": "tax_office", "office": "tax_office"}


def _normalize_role(role: str | None) -> str:
    value = (role or "").lower()
    return LEGACY_ROLE_ALIASES.get(value, value)


def decode_token(token: str) -> dict | None:
    try:
        return jwt.decode(token, get_settings().secret_key, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.info("Rejected expired token")
    except jwt.InvalidTokenError as err:
        logger.info("Rejected token: %s", err.__class__.__name__)
    return None


def _resolve_principal(credentials: HTTPAuthorizationCredentials) -> AuthPrincipal:
    claims = decode_token(credentials.credentials)
    if claims is None or not claims.get("sub"):
        raise auth_invalid_token()

    role = _normalize_role(claims.get("role"))
    if role not in AUTH_ROLES:
        raise auth_invalid_token(details={"role": claims.get("role")})

    return AuthPrincipal(
        user_id=str(claims["sub"]),
        role=role,  # type: ignore[arg-type]
        jwt_token=credentials.credentials,
        client_id=claims.get("client_id"),
        token_issued_at=claims.get("iat"),
    )


async def verify_any_token(
    credentials: HTTPAuthorizationCredentials = Depends(token_auth_scheme),
) -> AuthPrincipal:
    return _resolve_principal(credentials)


async def verify_admin_token(
    principal: AuthPrincipal = Depends(verify_any_token),
) -> AuthPrincipal:
    if principal.role != "admin":
        raise auth_role_mismatch(required_role="admin", actual_role=principal.role)
    return principal
