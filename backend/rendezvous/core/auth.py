"""Bearer JWT authentication for FastAPI."""

from dataclasses import dataclass, field

import jwt as pyjwt
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from rendezvous.core.config import get_settings
from rendezvous.domain.lifecycle import UserRole

_bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthUser:
    """Authenticated caller: token subject plus the role stored in user_profiles."""

    user_id: str
    role: UserRole
    claims: dict = field(default_factory=dict)


def decode_token(token: str) -> dict:
    """Verify and decode a session JWT.

    Raises ``HTTPException(401)`` on any validation failure.
    """
    settings = get_settings()
    if not settings.jwt_secret:
        raise HTTPException(status_code=500, detail="Authentication is misconfigured")

    options = {"verify_exp": True, "require": ["sub", "exp"], "verify_aud": bool(settings.jwt_audience)}
    try:
        payload = pyjwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience or None,
            options=options,
        )
    except pyjwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except pyjwt.MissingRequiredClaimError as exc:
        raise HTTPException(status_code=401, detail=f"Missing required claim: {exc}")
    except pyjwt.InvalidTokenError as exc:
        raise HTTPException(status_code=401, detail=f"Invalid token: {exc}")

    if not payload.get("sub"):
        raise HTTPException(status_code=401, detail="Token missing sub claim")
    return payload


async def load_role(user_id: str) -> UserRole:
    from rendezvous.db.base import get_session_factory
    from rendezvous.db.repositories import UserRepository

    factory = get_session_factory()
    async with factory() as session:
        profile = await UserRepository().get(session, user_id)
    if profile is None:
        raise HTTPException(status_code=403, detail="User profile not found")
    try:
        return UserRole(profile.role)
    except ValueError:
        raise HTTPException(status_code=403, detail="Unknown user role")


async def require_auth(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> AuthUser:
    """FastAPI dependency that validates the bearer JWT and loads the caller's role.

    Usage::

        @router.get("/protected")
        async def protected(user: AuthUser = Depends(require_auth)):
            ...
    """
    if credentials is None:
        raise HTTPException(status_code=401, detail="Missing authorization header")

    claims = decode_token(credentials.credentials)
    user = AuthUser(user_id=claims["sub"], role=await load_role(claims["sub"]), claims=claims)

    # Set user_id on request state for downstream use (error handlers, audit logging)
    request.state.user_id = user.user_id
    return user


def require_role(*roles: UserRole):
    """Dependency factory restricting a route to the given roles (403 otherwise)."""

    async def dependency(user: AuthUser = Depends(require_auth)) -> AuthUser:
        if user.role not in roles:
            allowed = ", ".join(role.value for role in roles)
            raise HTTPException(status_code=403, detail=f"This action requires role: {allowed}")
        return user

    return dependency
