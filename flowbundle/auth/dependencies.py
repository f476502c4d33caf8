"""Authentication dependencies for route guards.

Tokens are HS256 JWTs minted by the main platform with a shared secret
and issuer "auth-api". Browsers send them in the `athenaoffice` cookie
(rendered flows are opened directly in a tab); API clients may use an
`Authorization: Bearer` header instead.

Claims used: `sub` (email), `role`, `userId`, `name`.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from jose import JWTError, jwt

from flowbundle.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

ROLE_ADMIN = "ADMIN"
ROLE_SECTOR_LEAD = "LIDER_DE_SETOR"
ROLE_EMPLOYEE = "FUNCIONARIO"


@dataclass(frozen=True)
class CurrentUser:
    id: int
    email: str
    role: str
    name: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def decode_token(token: str, settings: Settings) -> dict:
    """Verify signature, expiry and issuer of a platform token."""
    if not settings.jwt_secret:
        raise JWTError("JWT_SECRET is not configured")
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=["HS256"],
        issuer=settings.jwt_issuer,
        options={"verify_aud": False},
    )


def _extract_token(request: Request, settings: Settings) -> str:
    authorization = request.headers.get("Authorization", "")
    if authorization.startswith("Bearer "):
        return authorization.removeprefix("Bearer ").strip()
    return request.cookies.get(settings.auth_cookie_name, "").strip()


async def get_current_user(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> CurrentUser:
    """Validate the caller's token and return who they are.

    The user ID is stored on `request.state` so the rate limiter can key
    on it.
    """
    token = _extract_token(request, settings)
    if not token:
        logger.warning("auth: no bearer token or session cookie")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing token",
        )

    try:
        payload = decode_token(token, settings)
    except JWTError as exc:
        logger.warning("auth: JWT verification failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        )

    sub = payload.get("sub")
    role = payload.get("role")
    user_id = payload.get("userId")
    if not sub or not role or user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incomplete token claims",
        )

    try:
        user = CurrentUser(id=int(user_id), email=sub, role=role, name=payload.get("name"))
    except (TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid userId claim",
        )

    request.state.user_id = user.id
    return user


def require_roles(*roles: str) -> Callable:
    """Build a dependency that admits only callers holding one of `roles`."""

    async def _guard(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in roles:
            logger.warning("auth: role %s denied (needs one of %s)", user.role, roles)
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient role",
            )
        return user

    return _guard
