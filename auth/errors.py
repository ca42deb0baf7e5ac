"""
auth/errors.py -- Structured error kinds for identity, credential and access control.

Every failure the auth core can report is a subclass of AuthError. Each class
carries a stable machine-readable code, a client-safe message and the HTTP
status the API layer maps it to. api/main.py registers one exception handler
for AuthError and renders the usual {"error": {...}} envelope -- route
handlers never build these responses by hand.

Grouping:
  OTPError   -- NotFound / Expired / AlreadyConsumed / Mismatch. Distinct kinds
                for diagnostics and tests; the API still returns 400 for all.
  TokenError -- InvalidToken / TokenExpired. The SessionGuard never lets these
                reach the client: both become Unauthenticated (401).

Layer rule: no imports from api/ or contracts/.
"""

from __future__ import annotations


class AuthError(Exception):
    code: str = "auth_error"
    status_code: int = 400
    message: str = "Authentication error."

    def __init__(self, message: str | None = None, detail: str | None = None) -> None:
        self.message = message or self.message
        self.detail = detail
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Credential store
# ---------------------------------------------------------------------------


class DuplicateEmail(AuthError):
    code = "duplicate_email"
    status_code = 409
    message = "An account with that email already exists."


class InvalidCredentials(AuthError):
    """Wrong password and unknown email are deliberately the same error."""

    code = "invalid_credentials"
    status_code = 401
    message = "Invalid email or password."


class PasswordHashError(AuthError):
    """The hashing primitive failed. Fatal for the request; nothing is stored."""

    code = "password_hash_failed"
    status_code = 500
    message = "Could not process the password."


# ---------------------------------------------------------------------------
# One-time passcodes
# ---------------------------------------------------------------------------


class OTPError(AuthError):
    code = "otp_error"
    status_code = 400
    message = "One-time code rejected."


class OTPNotFound(OTPError):
    code = "otp_not_found"
    message = "No one-time code has been issued for this channel."


class OTPExpired(OTPError):
    code = "otp_expired"
    message = "The one-time code has expired."


class OTPAlreadyConsumed(OTPError):
    code = "otp_already_consumed"
    message = "The one-time code has already been used."


class OTPMismatch(OTPError):
    code = "otp_mismatch"
    message = "The one-time code is incorrect."


# ---------------------------------------------------------------------------
# Bearer credentials
# ---------------------------------------------------------------------------


class TokenError(AuthError):
    code = "token_error"
    status_code = 401
    message = "Credential rejected."


class InvalidToken(TokenError):
    code = "invalid_token"
    message = "Credential is malformed or its signature is invalid."


class TokenExpired(TokenError):
    code = "token_expired"
    message = "Credential has expired."


# ---------------------------------------------------------------------------
# Request-level outcomes
# ---------------------------------------------------------------------------


class Unauthenticated(AuthError):
    code = "unauthorized"
    status_code = 401
    message = "Authentication required."


class Forbidden(AuthError):
    code = "forbidden"
    status_code = 403
    message = "You do not have access to this resource."


class ResourceNotFound(AuthError):
    code = "not_found"
    status_code = 404
    message = "Resource not found."
