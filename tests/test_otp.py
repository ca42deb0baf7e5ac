"""Unit tests for auth/otp.py -- OTPChallengeEngine over both OTPStore implementations.

Covers:
- issue() produces a zero-padded numeric code of the configured length
- verify() is single-use: second call fails with OTPAlreadyConsumed
- a mismatch does not consume the challenge
- expiry boundary: valid strictly before expires_at, expired at it
- re-issue invalidates the previous code
- failure kinds are checked in order (not found, consumed, expired, mismatch)
- purge_expired() keeps expired challenges for the retention window, so late
  attempts still fail with OTPExpired, then drops them
- concurrent verifications of one code: exactly one wins
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from auth.errors import OTPAlreadyConsumed, OTPError, OTPExpired, OTPMismatch, OTPNotFound
from auth.models import Channel
from auth.otp import MemoryOTPStore, OTPChallengeEngine
from auth.store import SqlOTPStore, build_engine

START = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def _other(code: str) -> str:
    return "1" * len(code) if code != "1" * len(code) else "2" * len(code)


# ---------------------------------------------------------------------------
# Shared fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(params=["memory", "sql"])
def store(request):
    if request.param == "memory":
        yield MemoryOTPStore()
        return
    engine = build_engine("sqlite:///:memory:")
    yield SqlOTPStore(engine)
    engine.dispose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine(store, clock) -> OTPChallengeEngine:
    return OTPChallengeEngine(store, ttl_seconds=900, length=6, clock=clock)


# ---------------------------------------------------------------------------
# Issue
# ---------------------------------------------------------------------------


def test_issue_generates_numeric_code_of_configured_length(engine):
    challenge = engine.issue("u1", Channel.email)
    assert len(challenge.code) == 6
    assert challenge.code.isdigit()
    assert challenge.expires_at == START + timedelta(seconds=900)
    assert challenge.consumed is False


def test_issue_respects_length(store, clock):
    engine = OTPChallengeEngine(store, length=8, clock=clock)
    assert len(engine.issue("u1", Channel.mobile).code) == 8


def test_channels_are_independent(engine):
    email = engine.issue("u1", Channel.email)
    mobile = engine.issue("u1", Channel.mobile)
    assert engine.verify("u1", Channel.mobile, mobile.code) is True
    assert engine.verify("u1", Channel.email, email.code) is True


# ---------------------------------------------------------------------------
# Verify
# ---------------------------------------------------------------------------


def test_verify_is_single_use(engine):
    challenge = engine.issue("u1", Channel.email)
    assert engine.verify("u1", Channel.email, challenge.code) is True
    with pytest.raises(OTPAlreadyConsumed):
        engine.verify("u1", Channel.email, challenge.code)


def test_mismatch_does_not_consume(engine):
    challenge = engine.issue("u1", Channel.email)
    with pytest.raises(OTPMismatch):
        engine.verify("u1", Channel.email, _other(challenge.code))
    assert engine.verify("u1", Channel.email, challenge.code) is True


def test_not_found_when_nothing_issued(engine):
    with pytest.raises(OTPNotFound):
        engine.verify("nobody", Channel.email, "123456")


def test_valid_just_before_expiry(engine, clock):
    challenge = engine.issue("u1", Channel.email)
    clock.advance(seconds=899, microseconds=999999)
    assert engine.verify("u1", Channel.email, challenge.code) is True


def test_expired_at_exact_boundary(engine, clock):
    challenge = engine.issue("u1", Channel.email)
    clock.advance(seconds=900)
    with pytest.raises(OTPExpired):
        engine.verify("u1", Channel.email, challenge.code)


def test_expired_checked_before_mismatch(engine, clock):
    challenge = engine.issue("u1", Channel.email)
    clock.advance(minutes=30)
    with pytest.raises(OTPExpired):
        engine.verify("u1", Channel.email, _other(challenge.code))


def test_consumed_checked_before_expiry(engine, clock):
    challenge = engine.issue("u1", Channel.email)
    engine.verify("u1", Channel.email, challenge.code)
    clock.advance(minutes=30)
    with pytest.raises(OTPAlreadyConsumed):
        engine.verify("u1", Channel.email, challenge.code)


def test_reissue_invalidates_previous_code(engine):
    first = engine.issue("u1", Channel.email)
    second = engine.issue("u1", Channel.email)
    if first.code != second.code:
        with pytest.raises(OTPMismatch):
            engine.verify("u1", Channel.email, first.code)
    assert engine.verify("u1", Channel.email, second.code) is True


def test_reissue_after_consume_starts_fresh(engine):
    first = engine.issue("u1", Channel.email)
    engine.verify("u1", Channel.email, first.code)
    second = engine.issue("u1", Channel.email)
    assert engine.verify("u1", Channel.email, second.code) is True


def test_reissue_resets_expiry(engine, clock):
    engine.issue("u1", Channel.email)
    clock.advance(seconds=800)
    second = engine.issue("u1", Channel.email)
    clock.advance(seconds=800)
    assert engine.verify("u1", Channel.email, second.code) is True


def test_all_failures_share_base_class(engine):
    with pytest.raises(OTPError):
        engine.verify("nobody", Channel.mobile, "000000")


# ---------------------------------------------------------------------------
# Purge
# ---------------------------------------------------------------------------


def test_expired_code_still_reports_expiry_after_purge(engine, clock):
    challenge = engine.issue("u1", Channel.email)
    clock.advance(minutes=16)

    assert engine.purge_expired() == 0
    with pytest.raises(OTPExpired):
        engine.verify("u1", Channel.email, challenge.code)


def test_purge_removes_only_challenges_past_retention(store, clock):
    engine = OTPChallengeEngine(store, ttl_seconds=900, clock=clock, retention_seconds=3600)
    engine.issue("old", Channel.email)
    clock.advance(seconds=600)
    recent = engine.issue("new", Channel.email)
    # "old" expired over an hour ago; "new" expired within the retention window.
    clock.advance(seconds=300 + 3600)

    assert engine.purge_expired() == 1
    with pytest.raises(OTPNotFound):
        engine.verify("old", Channel.email, "000000")
    with pytest.raises(OTPExpired):
        engine.verify("new", Channel.email, recent.code)


def test_purge_keeps_live_challenges(engine, clock):
    live = engine.issue("u1", Channel.mobile)
    clock.advance(seconds=60)
    assert engine.purge_expired() == 0
    assert engine.verify("u1", Channel.mobile, live.code) is True


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


def test_concurrent_verification_has_one_winner(clock):
    engine = OTPChallengeEngine(MemoryOTPStore(), clock=clock)
    challenge = engine.issue("u1", Channel.email)

    def attempt(_):
        try:
            return engine.verify("u1", Channel.email, challenge.code)
        except OTPAlreadyConsumed:
            return False

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(attempt, range(16)))

    assert results.count(True) == 1


def test_memory_store_get_returns_copy():
    store = MemoryOTPStore()
    engine = OTPChallengeEngine(store)
    engine.issue("u1", Channel.email)
    copy = store.get("u1", Channel.email)
    copy.consumed = True
    assert store.get("u1", Channel.email).consumed is False
