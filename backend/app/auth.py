# backend/app/auth.py
"""
Bearer-token verification for the updates API.

Tokens are issued by the session service; this module only verifies them
and maps claims to an AuthContext (``sub`` = user id, ``org`` = organization
id). EventSource cannot set headers, so the stream endpoint also accepts the
token as a ``token`` query parameter.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Dict, Optional, cast

from fastapi import Depends, Query
from fastapi.security import OAuth2PasswordBearer
import jwt
from jwt import PyJWTError

from .core.config import settings
from .core.exceptions import ForbiddenException, UnauthorizedException

logger = logging.getLogger(__name__)

oauth2_scheme_optional = OAuth2PasswordBearer(tokenUrl="auth/login", auto_error=False)


@dataclass(frozen=True)
class AuthContext:
    user_id: str
    organization_id: str


def _secret_value(secret_obj: Any) -> str:
    getter = getattr(secret_obj, "get_secret_value", None)
    if callable(getter):
        return cast(str, getter())
    return cast(str, secret_obj)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Decode and verify a JWT access token. Raises PyJWTError when invalid."""
    payload_raw = jwt.decode(
        token,
        _secret_value(settings.secret_key),
        algorithms=[settings.algorithm],
        options={"verify_aud": False},
    )
    return cast(Dict[str, Any], payload_raw)


def create_access_token(
    user_id: str,
    organization_id: str,
    expires_delta: Optional[timedelta] = None,
    extra_claims: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Create a JWT access token for a user within an organization.

    Used by local tooling and tests; production tokens come from the
    session service with the same claims.
    """
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    to_encode: Dict[str, Any] = dict(extra_claims or {})
    to_encode.update({"sub": user_id, "org": organization_id, "exp": expire})
    return cast(
        str,
        jwt.encode(to_encode, _secret_value(settings.secret_key), algorithm=settings.algorithm),
    )


def resolve_auth_context(token: Optional[str], orgid: str) -> AuthContext:
    if not token:
        raise UnauthorizedException()
    try:
        claims = decode_access_token(token)
    except PyJWTError as exc:
        logger.info("[AUTH] Rejected token: %s", exc)
        raise UnauthorizedException("Invalid or expired token") from exc

    user_id = claims.get("sub")
    organization_id = claims.get("org")
    if not isinstance(user_id, str) or not user_id or not isinstance(organization_id, str):
        raise UnauthorizedException("Token is missing required claims")
    if organization_id != orgid:
        logger.warning(
            "[AUTH] Organization mismatch",
            extra={"user_id": user_id, "token_org": organization_id, "path_org": orgid},
        )
        raise ForbiddenException("Token is not valid for this organization")
    return AuthContext(user_id=user_id, organization_id=organization_id)


async def get_auth_context(
    orgid: str,
    bearer_token: Optional[str] = Depends(oauth2_scheme_optional),
    token: Optional[str] = Query(default=None, description="Token for EventSource clients"),
) -> AuthContext:
    """FastAPI dependency: Authorization header first, then ``?token=``."""
    return resolve_auth_context(bearer_token or token, orgid)
