"""
auth/dependencies.py -- SessionGuard and the FastAPI Depends() helpers built on it.

SessionGuard turns an inbound credential into an IdentityContext:
  1. Authorization: Bearer <token> header -- API clients.
  2. "access_token" cookie -- browser clients. Same JWT, different carrier.

Both carriers converge on TokenIssuer.verify(); there is one authentication
mechanism and one authorization engine. The cookie path is only an adapter.

Outcomes:
  no credential            -> Unauthenticated (401)
  invalid / expired token  -> Unauthenticated (401), never Forbidden
  role / resource mismatch -> Forbidden (403), raised later by the caller

The guard trusts the token alone: it does not look the user up, so a
deactivated user keeps access until the credential expires.

get_identity() is the hard dependency (raises 401); try_get_identity() is the
soft one (returns None). require_admin() adds the 403 role check.

Layer rule: no imports from api/ or contracts/.
"""

from __future__ import annotations

import logging

from fastapi import Request

from auth.errors import Forbidden, TokenError, Unauthenticated
from auth.models import IdentityContext
from auth.tokens import COOKIE_NAME, TokenIssuer

logger = logging.getLogger("contractportal.auth.session")

_BEARER_PREFIX = "bearer "


class SessionGuard:
    def __init__(self, tokens: TokenIssuer) -> None:
        self.tokens = tokens

    @staticmethod
    def extract(authorization: str | None, cookie: str | None) -> str | None:
        if authorization and authorization[: len(_BEARER_PREFIX)].lower() == _BEARER_PREFIX:
            token = authorization[len(_BEARER_PREFIX) :].strip()
            if token:
                return token
        return cookie or None

    def authenticate(self, authorization: str | None, cookie: str | None = None) -> IdentityContext:
        token = self.extract(authorization, cookie)
        if token is None:
            raise Unauthenticated()
        try:
            claims = self.tokens.verify(token)
        except TokenError as exc:
            logger.info("Credential rejected: %s", exc.code)
            raise Unauthenticated(detail=exc.code) from exc
        return claims.identity()


def try_get_identity(request: Request) -> IdentityContext | None:
    """Resolve the request's identity, or None if it carries no valid credential."""
    try:
        return get_identity(request)
    except Unauthenticated:
        return None


def get_identity(request: Request) -> IdentityContext:
    """Require authentication. Attaches the identity to request.state.identity.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(identity: IdentityContext = Depends(get_identity)): ...
    """
    guard: SessionGuard = request.app.state.session_guard
    identity = guard.authenticate(
        request.headers.get("Authorization"),
        request.cookies.get(COOKIE_NAME),
    )
    request.state.identity = identity
    return identity


def require_admin(request: Request) -> IdentityContext:
    """Raises 401 if unauthenticated, 403 if the caller is not an admin."""
    identity = get_identity(request)
    if not identity.is_admin:
        raise Forbidden("Admin access required.")
    return identity
