"""Unit tests for auth/tokens.py and the SessionGuard in auth/dependencies.py.

Covers:
- mint() then verify() returns the subject and role
- an expired token raises TokenExpired, a tampered or foreign one InvalidToken
- tokens missing required claims are InvalidToken
- SessionGuard prefers the Bearer header and falls back to the cookie
- SessionGuard turns every token failure into Unauthenticated
"""

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.dependencies import SessionGuard
from auth.errors import InvalidToken, TokenExpired, Unauthenticated
from auth.models import IdentityContext, Role
from auth.tokens import ALGORITHM, TokenIssuer

KEY = "k" * 64
OTHER_KEY = "o" * 64


@pytest.fixture
def issuer() -> TokenIssuer:
    return TokenIssuer(KEY, default_ttl_seconds=900)


# ---------------------------------------------------------------------------
# TokenIssuer
# ---------------------------------------------------------------------------


def test_mint_then_verify_round_trip(issuer):
    claims = issuer.verify(issuer.mint("user-1", Role.employee))
    assert claims.subject_id == "user-1"
    assert claims.role is Role.employee
    assert claims.identity() == IdentityContext(id="user-1", role=Role.employee)


def test_default_ttl_sets_expiry(issuer):
    before = datetime.now(timezone.utc)
    claims = issuer.verify(issuer.mint("user-1", Role.client))
    # exp is whole seconds, so allow for truncation.
    assert before + timedelta(seconds=898) <= claims.expires_at <= before + timedelta(seconds=901)


def test_expired_token_raises_token_expired(issuer):
    token = issuer.mint("user-1", Role.client, ttl_seconds=-10)
    with pytest.raises(TokenExpired):
        issuer.verify(token)


def test_token_signed_with_other_key_is_invalid(issuer):
    foreign = TokenIssuer(OTHER_KEY).mint("user-1", Role.admin)
    with pytest.raises(InvalidToken):
        issuer.verify(foreign)


def test_tampered_token_is_invalid(issuer):
    token = issuer.mint("user-1", Role.client)
    header, payload, signature = token.split(".")
    forged = jwt.encode({"sub": "user-1", "role": "admin", "exp": 9999999999}, OTHER_KEY, algorithm=ALGORITHM)
    _, forged_payload, _ = forged.split(".")
    with pytest.raises(InvalidToken):
        issuer.verify(f"{header}.{forged_payload}.{signature}")


def test_garbage_is_invalid(issuer):
    with pytest.raises(InvalidToken):
        issuer.verify("not-a-jwt")


def test_unknown_role_is_invalid(issuer):
    token = jwt.encode({"sub": "user-1", "role": "superuser", "exp": 9999999999}, KEY, algorithm=ALGORITHM)
    with pytest.raises(InvalidToken):
        issuer.verify(token)


def test_missing_subject_is_invalid(issuer):
    token = jwt.encode({"role": "client", "exp": 9999999999}, KEY, algorithm=ALGORITHM)
    with pytest.raises(InvalidToken):
        issuer.verify(token)


def test_missing_expiry_is_invalid(issuer):
    token = jwt.encode({"sub": "user-1", "role": "client"}, KEY, algorithm=ALGORITHM)
    with pytest.raises(InvalidToken):
        issuer.verify(token)


# ---------------------------------------------------------------------------
# SessionGuard
# ---------------------------------------------------------------------------


def test_guard_reads_bearer_header(issuer):
    guard = SessionGuard(issuer)
    identity = guard.authenticate(f"Bearer {issuer.mint('user-1', Role.client)}")
    assert identity.id == "user-1"


def test_guard_bearer_prefix_is_case_insensitive(issuer):
    guard = SessionGuard(issuer)
    identity = guard.authenticate(f"bearer {issuer.mint('user-1', Role.client)}")
    assert identity.role is Role.client


def test_guard_falls_back_to_cookie(issuer):
    guard = SessionGuard(issuer)
    identity = guard.authenticate(None, issuer.mint("user-2", Role.employee))
    assert identity == IdentityContext(id="user-2", role=Role.employee)


def test_guard_header_wins_over_cookie(issuer):
    guard = SessionGuard(issuer)
    identity = guard.authenticate(
        f"Bearer {issuer.mint('from-header', Role.client)}",
        issuer.mint("from-cookie", Role.client),
    )
    assert identity.id == "from-header"


def test_guard_without_credential_is_unauthenticated(issuer):
    with pytest.raises(Unauthenticated):
        SessionGuard(issuer).authenticate(None, None)


def test_guard_ignores_non_bearer_scheme(issuer):
    with pytest.raises(Unauthenticated):
        SessionGuard(issuer).authenticate("Basic dXNlcjpwYXNz")


@pytest.mark.parametrize("ttl, expected_detail", [(-10, "token_expired"), (None, "invalid_token")])
def test_guard_maps_token_errors_to_unauthenticated(issuer, ttl, expected_detail):
    if ttl is None:
        token = TokenIssuer(OTHER_KEY).mint("user-1", Role.client)
    else:
        token = issuer.mint("user-1", Role.client, ttl_seconds=ttl)
    with pytest.raises(Unauthenticated) as exc_info:
        SessionGuard(issuer).authenticate(f"Bearer {token}")
    assert exc_info.value.detail == expected_detail
