"""
auth/service.py -- AuthService: the boundary operations exposed to the rest of the portal.

  start_registration   -> pending user + one OTP per channel, delivered
  verify_registration  -> per-channel verification; Active once both are done
  resend_otp           -> fresh code for one channel of a pending user
  login                -> bearer credential or InvalidCredentials
  logout               -> acknowledgement only (stateless credentials)
  forgot_password      -> silent email OTP; identical outcome for unknown emails
  reset_password       -> OTP check, then rehash
  change_password      -> current-password check, then rehash

Registration state machine:
  The two channels are independent. Each successful verification sets that
  channel's flag on the user; the account becomes active in whichever call
  observes both flags set. Email-then-mobile, mobile-then-email, or both in
  one call all reach the same state.

Errors are never retried here. Every failure is raised to the caller as one
of the kinds in auth/errors.py. The single exception is forgot_password(),
which swallows "no such account" so callers cannot enumerate emails.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from auth.credentials import CredentialStore, normalize_email
from auth.errors import OTPError, OTPNotFound, ResourceNotFound
from auth.models import Channel, IdentityContext, User
from auth.otp import OTPChallengeEngine, OTPSender
from auth.store import UserStore
from auth.tokens import TokenIssuer

logger = logging.getLogger("contractportal.auth.service")

_CHANNEL_FLAGS: dict[Channel, str] = {
    Channel.email: "email_verified",
    Channel.mobile: "mobile_verified",
}


@dataclass(frozen=True)
class LoginResult:
    user: User
    access_token: str
    expires_in: int


class AuthService:
    def __init__(
        self,
        users: UserStore,
        credentials: CredentialStore,
        otp: OTPChallengeEngine,
        tokens: TokenIssuer,
        sender: OTPSender,
    ) -> None:
        self.users = users
        self.credentials = credentials
        self.otp = otp
        self.tokens = tokens
        self.sender = sender

    def _deliver(self, user: User, channel: Channel) -> None:
        challenge = self.otp.issue(user.id, channel)
        self.sender.send(user, channel, challenge.code)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def start_registration(self, email: str, contact: str, password: str, **profile) -> User:
        user = await self.credentials.create_pending_user(email, contact, password, **profile)
        for channel in Channel:
            self._deliver(user, channel)
        return user

    def verify_registration(self, user_id: str, email_code: str | None, mobile_code: str | None) -> User:
        """Verify whichever codes were supplied; activate once both channels are verified.

        A channel that is already verified is skipped. A channel whose code is
        None stays as it is. Successful channels are recorded even when the
        other one fails, then the first failure is raised.
        """
        user = self.users.get_user_by_id(user_id)
        if user is None:
            raise ResourceNotFound("Registration not found.")
        if user.registration_complete:
            return user

        codes = {Channel.email: email_code, Channel.mobile: mobile_code}
        failure: OTPError | None = None
        for channel, code in codes.items():
            flag = _CHANNEL_FLAGS[channel]
            if getattr(user, flag) or code is None:
                continue
            try:
                self.otp.verify(user.id, channel, code)
            except OTPError as exc:
                failure = failure or exc
                continue
            self.users.update_user(user.id, **{flag: True})

        user = self.users.get_user_by_id(user.id)
        if user.registration_complete and not user.is_active:
            self.users.update_user(user.id, is_active=True)
            user = self.users.get_user_by_id(user.id)
            logger.info("User %s activated", user.id)
        if failure is not None:
            raise failure
        return user

    def resend_otp(self, user_id: str, channel: Channel) -> None:
        user = self.users.get_user_by_id(user_id)
        if user is None or user.registration_complete:
            raise ResourceNotFound("Registration not found.")
        if getattr(user, _CHANNEL_FLAGS[channel]):
            # Already verified; a new code would have nothing to unlock.
            return
        self._deliver(user, channel)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def login(self, email: str, password: str) -> LoginResult:
        user = await self.credentials.authenticate(email, password)
        token = self.tokens.mint(user.id, user.role)
        logger.info("User %s logged in", user.id)
        return LoginResult(user=user, access_token=token, expires_in=self.tokens.default_ttl)

    def logout(self, identity: IdentityContext | None = None) -> None:
        """Nothing to invalidate server-side; the credential simply ages out."""
        if identity is not None:
            logger.info("User %s logged out", identity.id)

    # ------------------------------------------------------------------
    # Password recovery and change
    # ------------------------------------------------------------------

    def forgot_password(self, email: str) -> None:
        """Issue an email-channel OTP to a registered account. Silent either way."""
        user = self.users.get_user_by_email(normalize_email(email))
        if user is None or not user.registration_complete:
            # Deliberately swallowed: the caller must not learn whether the email exists.
            logger.info("Password reset requested for an unregistered email")
            return
        self._deliver(user, Channel.email)

    async def reset_password(self, email: str, otp_code: str, new_password: str) -> None:
        user = self.users.get_user_by_email(normalize_email(email))
        if user is None or not user.registration_complete:
            # Same outcome as a registered email that never requested a code.
            raise OTPNotFound()
        self.otp.verify(user.id, Channel.email, otp_code)
        await self.credentials.update_password(user.id, new_password)

    async def change_password(self, identity: IdentityContext, current_password: str, new_password: str) -> None:
        await self.credentials.change_password(identity.id, current_password, new_password)
