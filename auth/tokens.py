"""
auth/tokens.py -- TokenIssuer: stateless signed bearer credentials.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry the
       subject id ("sub"), role and expiry. Verification needs no store lookup.

  Failure kinds: verify() raises InvalidToken for anything malformed, wrongly
       signed, or missing claims, and TokenExpired for a token that is intact
       but past its "exp". The distinction exists for logs and tests; the
       SessionGuard turns both into Unauthenticated.

  No revocation: a credential stays valid until it expires, even across a
       password change or deactivation. If that ever has to change, it belongs
       in a denylist consulted by the SessionGuard, not in this module.

  Cookie carrier: set_auth_cookie() writes the same token as an httpOnly
       cookie for browser clients. It is only a second way to carry the token;
       both paths end in TokenIssuer.verify().
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import InvalidToken, TokenExpired
from auth.models import Clock, Role, TokenClaims, utcnow

ALGORITHM = "HS256"
COOKIE_NAME = "access_token"


class TokenIssuer:
    def __init__(self, secret_key: str, default_ttl_seconds: int = 900, clock: Clock = utcnow) -> None:
        self._secret_key = secret_key
        self.default_ttl = default_ttl_seconds
        self.clock = clock

    def mint(self, subject_id: str, role: Role, ttl_seconds: int | None = None) -> str:
        """Encode a signed JWT for subject_id/role that expires ttl_seconds from now."""
        issued_at = self.clock()
        expire = issued_at + timedelta(seconds=ttl_seconds if ttl_seconds is not None else self.default_ttl)
        payload = {
            "sub": subject_id,
            "role": Role(role).value,
            "iat": issued_at,
            "exp": expire,
        }
        return jwt.encode(payload, self._secret_key, algorithm=ALGORITHM)

    def verify(self, token: str) -> TokenClaims:
        """Decode and check a JWT. Returns its claims or raises InvalidToken / TokenExpired."""
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[ALGORITHM])
        except ExpiredSignatureError as exc:
            raise TokenExpired() from exc
        except JWTError as exc:
            raise InvalidToken(detail=str(exc)) from exc

        subject_id = payload.get("sub")
        if not isinstance(subject_id, str) or not subject_id:
            raise InvalidToken(detail="missing subject")
        try:
            role = Role(payload.get("role"))
        except ValueError as exc:
            raise InvalidToken(detail="unknown role") from exc
        if "exp" not in payload:
            raise InvalidToken(detail="missing expiry")
        return TokenClaims(
            subject_id=subject_id,
            role=role,
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )


def set_auth_cookie(response, token: str, max_age: int, secure: bool = False) -> None:
    """Write the access token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation.
    max_age matches the JWT expiry so both expire together.
    """
    response.set_cookie(
        COOKIE_NAME,
        value=token,
        httponly=True,
        samesite="lax",
        secure=secure,
        max_age=max_age,
    )
