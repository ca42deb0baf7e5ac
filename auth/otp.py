"""
auth/otp.py -- OTPChallenge engine, its store interface, and code delivery.

One challenge per (subject_id, channel). issue() overwrites whatever was there,
so a re-issued code immediately invalidates the previous one. verify() is
single-use: the first matching call wins and every later call fails with
OTPAlreadyConsumed.

Failure kinds, checked in this order:
  OTPNotFound        -- nothing issued for the key (or purged after retention)
  OTPAlreadyConsumed -- the code was accepted before
  OTPExpired         -- now >= expires_at
  OTPMismatch        -- the code differs

Codes come from secrets.randbelow(), zero-padded, so every value in
000000-999999 is equally likely. Comparison uses hmac.compare_digest.

The engine never touches storage or delivery directly: it takes an OTPStore
(MemoryOTPStore here, SqlOTPStore in auth/store.py) and a clock, which is how
the tests drive expiry without sleeping.


Expired challenges are kept for a retention window before purge_expired()
evicts them, so a stale code is still reported as OTPExpired rather than
OTPNotFound.
"""

from __future__ import annotations

import hmac
import logging
import secrets
import threading
from datetime import datetime, timedelta
from typing import Protocol

from auth.errors import OTPAlreadyConsumed, OTPExpired, OTPMismatch, OTPNotFound
from auth.models import Channel, Clock, OTPChallenge, User, utcnow

logger = logging.getLogger("contractportal.auth.otp")

# ---------------------------------------------------------------------------
# Storage interface
# ---------------------------------------------------------------------------


class OTPStore(Protocol):
    def get(self, subject_id: str, channel: Channel) -> OTPChallenge | None: ...

    def put(self, challenge: OTPChallenge) -> None: ...

    def mark_consumed(self, subject_id: str, channel: Channel, code: str) -> bool: ...

    def purge_expired(self, cutoff: datetime) -> int: ...


class MemoryOTPStore:
    """Dict-backed OTPStore. Safe for concurrent use; last writer wins per key."""

    def __init__(self) -> None:
        self._challenges: dict[tuple[str, Channel], OTPChallenge] = {}
        self._lock = threading.Lock()

    def get(self, subject_id: str, channel: Channel) -> OTPChallenge | None:
        with self._lock:
            challenge = self._challenges.get((subject_id, channel))
            if challenge is None:
                return None
            # Copy so callers cannot mutate stored state behind the lock.
            return OTPChallenge(
                subject_id=challenge.subject_id,
                channel=challenge.channel,
                code=challenge.code,
                expires_at=challenge.expires_at,
                consumed=challenge.consumed,
            )

    def put(self, challenge: OTPChallenge) -> None:
        with self._lock:
            self._challenges[(challenge.subject_id, challenge.channel)] = challenge

    def mark_consumed(self, subject_id: str, channel: Channel, code: str) -> bool:
        with self._lock:
            challenge = self._challenges.get((subject_id, channel))
            if challenge is None or challenge.consumed or challenge.code != code:
                return False
            challenge.consumed = True
            return True

    def purge_expired(self, cutoff: datetime) -> int:
        """Drop every challenge with expires_at <= cutoff."""
        with self._lock:
            stale = [key for key, c in self._challenges.items() if c.is_expired(cutoff)]
            for key in stale:
                del self._challenges[key]
        return len(stale)

    def __len__(self) -> int:
        return len(self._challenges)


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------


class OTPSender(Protocol):
    def send(self, user: User, channel: Channel, code: str) -> None: ...


class LogOTPSender:
    """Development delivery: writes the code to the log instead of an inbox or phone.

    Replace with a real email/SMS sender in production; nothing else in the
    flow depends on how the code travels.
    """

    def __init__(self) -> None:
        self._logger = logging.getLogger("contractportal.otp")

    def send(self, user: User, channel: Channel, code: str) -> None:
        target = user.email if channel is Channel.email else user.contact_number
        self._logger.info("OTP for user %s via %s (%s): %s", user.id, channel.value, target, code)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class OTPChallengeEngine:
    def __init__(
        self,
        store: OTPStore,
        ttl_seconds: int = 900,
        length: int = 6,
        clock: Clock = utcnow,
        retention_seconds: int = 86400,
    ) -> None:
        self.store = store
        self.ttl = timedelta(seconds=ttl_seconds)
        self.retention = timedelta(seconds=retention_seconds)
        self.length = length
        self.clock = clock

    def _generate(self) -> str:
        return f"{secrets.randbelow(10**self.length):0{self.length}d}"

    def issue(self, subject_id: str, channel: Channel) -> OTPChallenge:
        """Create a fresh challenge for the key, replacing any previous one."""
        challenge = OTPChallenge(
            subject_id=subject_id,
            channel=channel,
            code=self._generate(),
            expires_at=self.clock() + self.ttl,
        )
        self.store.put(challenge)
        logger.info("OTP issued for %s on %s", subject_id, channel.value)
        return challenge

    def verify(self, subject_id: str, channel: Channel, code: str) -> bool:
        """Consume the challenge if code matches. Returns True or raises an OTPError."""
        challenge = self.store.get(subject_id, channel)
        if challenge is None:
            self._reject(subject_id, channel, "not_found")
            raise OTPNotFound()
        if challenge.consumed:
            self._reject(subject_id, channel, "already_consumed")
            raise OTPAlreadyConsumed()
        if challenge.is_expired(self.clock()):
            self._reject(subject_id, channel, "expired")
            raise OTPExpired()
        if not hmac.compare_digest(challenge.code.encode(), str(code).encode()):
            self._reject(subject_id, channel, "mismatch")
            raise OTPMismatch()
        if not self.store.mark_consumed(subject_id, channel, challenge.code):
            # Lost a race: a concurrent verify consumed it, or a re-issue replaced it.
            current = self.store.get(subject_id, channel)
            if current is None:
                self._reject(subject_id, channel, "not_found")
                raise OTPNotFound()
            if current.code != challenge.code:
                self._reject(subject_id, channel, "mismatch")
                raise OTPMismatch()
            self._reject(subject_id, channel, "already_consumed")
            raise OTPAlreadyConsumed()
        logger.info("OTP verified for %s on %s", subject_id, channel.value)
        return True

    def purge_expired(self) -> int:
        """Evict challenges whose expiry is at least the retention window in the past."""
        return self.store.purge_expired(self.clock() - self.retention)

    @staticmethod
    def _reject(subject_id: str, channel: Channel, reason: str) -> None:
        logger.info("OTP rejected for %s on %s: %s", subject_id, channel.value, reason)
