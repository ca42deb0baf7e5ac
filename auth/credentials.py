"""
auth/credentials.py -- CredentialStore: the only writer of identity facts.

Responsibilities:
  - create pending users with a bcrypt hash of the password (never plaintext)
  - verify passwords with timing equalization [C1]
  - replace password hashes (reset / change)
  - create already-active accounts for admins and the operator CLI

Concurrency:
  bcrypt is CPU-bound. Every hash and check runs on a ThreadPoolExecutor owned
  by this object (await loop.run_in_executor(...)), so one slow hash never
  stalls the event loop serving unrelated requests.

Timing equalization [C1]:
  authenticate() always runs bcrypt, against _dummy_hash when the email is
  unknown, so response time does not reveal whether an account exists.
  Unknown email, wrong password and inactive account all raise the same
  InvalidCredentials.

Known gap: update_password() does not invalidate credentials already issued.
Bearer tokens are stateless and stay valid until they expire.
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from functools import partial

from sqlalchemy.exc import IntegrityError

from auth.errors import DuplicateEmail, InvalidCredentials, ResourceNotFound
from auth.models import PROFILE_FIELDS, Role, User
from auth.passwords import hash_password, verify_password
from auth.store import UserStore

logger = logging.getLogger("contractportal.auth.credentials")


def normalize_email(email: str) -> str:
    return email.strip().lower()


class CredentialStore:
    def __init__(self, users: UserStore, rounds: int = 12, workers: int = 4) -> None:
        self.users = users
        self.rounds = rounds
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="pwhash")
        # Same cost factor as real hashes so the unknown-email path takes as long.
        self._dummy_hash = hash_password("contractportal_timing_dummy", rounds)

    # ------------------------------------------------------------------
    # Hashing off the event loop
    # ------------------------------------------------------------------

    async def hash(self, plain: str) -> str:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, partial(hash_password, plain, self.rounds))

    async def check(self, plain: str, hashed: str) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, verify_password, plain, hashed)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def create_pending_user(self, email: str, contact: str, password: str, **profile) -> User:
        """Create (or refresh) a pending record for email.

        An email held by an account that completed registration raises
        DuplicateEmail, whether that account is active or deactivated.
        An email held by a still-pending record is taken over: the password
        hash, contact number and profile are replaced and the same user id is
        returned, so an abandoned registration can be restarted.
        """
        email = normalize_email(email)
        password_hash = await self.hash(password)
        profile = {k: v for k, v in profile.items() if k in PROFILE_FIELDS and v is not None}

        existing = self.users.get_user_by_email(email)
        if existing is not None:
            if existing.registration_complete:
                raise DuplicateEmail()
            self.users.update_user(
                existing.id,
                password_hash=password_hash,
                contact_number=contact,
                email_verified=False,
                mobile_verified=False,
                **profile,
            )
            logger.info("Pending registration restarted for user %s", existing.id)
            return self.users.get_user_by_id(existing.id)

        user = User(email=email, password_hash=password_hash, contact_number=contact, role=Role.client, **profile)
        try:
            user_id = self.users.create_user(user)
        except IntegrityError as exc:
            # A concurrent registration for the same address got there first.
            raise DuplicateEmail() from exc
        logger.info("Pending user %s created", user_id)
        return self.users.get_user_by_id(user_id)

    async def create_active_user(self, email: str, password: str, role: Role, **profile) -> User:
        """Create an account that skips OTP verification (admin-created employees, CLI bootstrap)."""
        email = normalize_email(email)
        password_hash = await self.hash(password)
        profile = {k: v for k, v in profile.items() if k in PROFILE_FIELDS and v is not None}
        user = User(
            email=email,
            password_hash=password_hash,
            role=role,
            is_active=True,
            email_verified=True,
            mobile_verified=True,
            **profile,
        )
        try:
            user_id = self.users.create_user(user)
        except IntegrityError as exc:
            raise DuplicateEmail() from exc
        logger.info("Active %s account %s created", role.value, user_id)
        return self.users.get_user_by_id(user_id)

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    async def verify_password(self, email: str, plaintext: str) -> bool:
        """Return True if email exists and plaintext matches its hash.

        Runs one bcrypt check whether or not the email exists [C1].
        """
        user = self.users.get_user_by_email(normalize_email(email))
        if user is None:
            await self.check(plaintext, self._dummy_hash)
            return False
        return await self.check(plaintext, user.password_hash)

    async def authenticate(self, email: str, password: str) -> User:
        """Return the active user for (email, password) or raise InvalidCredentials.

        There is no lockout: every failed attempt returns the same error and
        leaves no state behind. Brute force is throttled at the route by the
        per-IP rate limit instead.
        """
        user = self.users.get_user_by_email(normalize_email(email))
        if user is None:
            # Equalize timing -- do NOT return early before running bcrypt [C1]
            await self.check(password, self._dummy_hash)
            logger.info("Login failed: unknown email")
            raise InvalidCredentials()
        if not await self.check(password, user.password_hash):
            logger.info("Login failed: bad password for user %s", user.id)
            raise InvalidCredentials()
        if not user.is_active:
            logger.info("Login refused: user %s is not active", user.id)
            raise InvalidCredentials()
        self.users.update_last_login(user.id)
        return user

    # ------------------------------------------------------------------
    # Password replacement
    # ------------------------------------------------------------------

    async def update_password(self, user_id: str, new_password: str) -> None:
        """Rehash and replace. Outstanding bearer credentials stay valid."""
        password_hash = await self.hash(new_password)
        if not self.users.update_user(user_id, password_hash=password_hash):
            raise ResourceNotFound("User not found.")
        logger.info("Password replaced for user %s", user_id)

    async def change_password(self, user_id: str, current_password: str, new_password: str) -> None:
        user = self.users.get_user_by_id(user_id)
        if user is None:
            raise ResourceNotFound("User not found.")
        if not await self.check(current_password, user.password_hash):
            logger.info("Password change refused for user %s: current password mismatch", user_id)
            raise InvalidCredentials("Current password is incorrect.")
        await self.update_password(user_id, new_password)

    def close(self) -> None:
        self._executor.shutdown(wait=True)
