"""
api/routes/v1/auth.py -- Registration, login and password endpoints.

Routes:
  POST /api/v1/auth/register             -- start registration; sends both OTPs
  POST /api/v1/auth/register/verify-otp  -- verify email and/or mobile code
  POST /api/v1/auth/register/resend-otp  -- re-issue one channel's code
  POST /api/v1/auth/login                -- password login; bearer token + cookie
  POST /api/v1/auth/logout               -- acknowledgement; clears cookie
  POST /api/v1/auth/forgot-password      -- always the same 200
  POST /api/v1/auth/reset-password       -- OTP + new password
  POST /api/v1/auth/change-password      -- requires auth
  GET  /api/v1/auth/me                   -- requires auth

Security:
  [H2] login and the OTP endpoints are rate-limited per IP (no account lockout).
  [C1] CredentialStore.authenticate() equalizes timing -- never inline the
       lookup + bcrypt check here.
  [M5] Cache-Control: no-store on every response that carries a credential,
       and on every AuthError response (set by the handler in api/main.py).
  forgot-password returns the same body whether or not the email exists.

Errors are raised as auth.errors kinds and rendered by the AuthError handler.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import LOGIN_LIMIT, OTP_LIMIT, limiter
from api.models import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RegisterRequest,
    RegistrationResponse,
    ResendOtpRequest,
    ResetPasswordRequest,
    UserResponse,
    VerifyOtpRequest,
)
from auth.dependencies import get_identity, try_get_identity
from auth.errors import ResourceNotFound
from auth.models import IdentityContext, User
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import COOKIE_NAME, set_auth_cookie
from core.config import get_settings

# Auth policy:
# - register, verify-otp, resend-otp, login, logout, forgot/reset-password: public
# - change-password, me: requires auth (get_identity)
router = APIRouter()

_FORGOT_PASSWORD_MESSAGE = "If that email is registered, a reset code has been sent."


def _registration_response(user: User, message: str) -> RegistrationResponse:
    return RegistrationResponse(
        user_id=user.id,
        state=user.registration_state.value,
        is_active=user.is_active,
        message=message,
    )


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


@limiter.limit(OTP_LIMIT)
@router.post("/auth/register", response_model=RegistrationResponse, status_code=201)
async def register(request: Request, body: RegisterRequest) -> RegistrationResponse:
    """Create a pending account and send one code to the email and one to the phone."""
    service: AuthService = request.app.state.auth_service
    user = await service.start_registration(
        body.email,
        body.contact_number,
        body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        address=body.address,
        pan_number=body.pan_number,
        aadhaar_number=body.aadhaar_number,
    )
    return _registration_response(user, "Verification codes sent to email and mobile.")


@limiter.limit(OTP_LIMIT)
@router.post("/auth/register/verify-otp", response_model=RegistrationResponse)
def verify_registration(request: Request, body: VerifyOtpRequest) -> RegistrationResponse:
    """Verify the supplied codes. The account activates once both channels are verified."""
    service: AuthService = request.app.state.auth_service
    user = service.verify_registration(body.user_id, body.email_otp, body.mobile_otp)
    message = "Registration complete." if user.is_active else "Verification recorded; awaiting the other channel."
    return _registration_response(user, message)


@limiter.limit(OTP_LIMIT)
@router.post("/auth/register/resend-otp", response_model=MessageResponse, status_code=202)
def resend_otp(request: Request, body: ResendOtpRequest) -> MessageResponse:
    service: AuthService = request.app.state.auth_service
    service.resend_otp(body.user_id, body.channel)
    return MessageResponse(message=f"A new {body.channel.value} code has been sent.")


# ---------------------------------------------------------------------------
# Login / logout
# ---------------------------------------------------------------------------


@limiter.limit(LOGIN_LIMIT)  # [H2]
@router.post("/auth/login", response_model=LoginResponse)
async def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; return a bearer token and set the cookie.

    Unknown email, wrong password and inactive account all produce the same
    401 invalid_credentials.
    """
    service: AuthService = request.app.state.auth_service
    result = await service.login(body.email, body.password)
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=result.access_token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=result.expires_in,
            user_id=result.user.id,
            role=result.user.role.value,
        ).model_dump(),
    )
    set_auth_cookie(resp, result.access_token, max_age=result.expires_in, secure=get_settings().secure_cookies)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
async def logout(request: Request) -> JSONResponse:
    """Acknowledge logout. The credential itself stays valid until it expires."""
    service: AuthService = request.app.state.auth_service
    service.logout(try_get_identity(request))
    resp = JSONResponse(content={"message": "Logged out."})
    resp.delete_cookie(COOKIE_NAME)
    return resp


# ---------------------------------------------------------------------------
# Password recovery
# ---------------------------------------------------------------------------


@limiter.limit(OTP_LIMIT)
@router.post("/auth/forgot-password", response_model=MessageResponse)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    service: AuthService = request.app.state.auth_service
    service.forgot_password(body.email)
    return MessageResponse(message=_FORGOT_PASSWORD_MESSAGE)


@limiter.limit(OTP_LIMIT)
@router.post("/auth/reset-password", response_model=MessageResponse)
async def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    service: AuthService = request.app.state.auth_service
    await service.reset_password(body.email, body.otp, body.new_password)
    return MessageResponse(message="Password has been reset.")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/change-password", response_model=MessageResponse)
async def change_password(
    request: Request,
    body: ChangePasswordRequest,
    identity: IdentityContext = Depends(get_identity),
) -> MessageResponse:
    service: AuthService = request.app.state.auth_service
    await service.change_password(identity, body.current_password, body.new_password)
    return MessageResponse(message="Password changed.")


@router.get("/auth/me", response_model=UserResponse)
def me(request: Request, identity: IdentityContext = Depends(get_identity)) -> UserResponse:
    """Return the profile behind the current credential."""
    user_store: UserStore = request.app.state.user_store
    user = user_store.get_user_by_id(identity.id)
    if user is None:
        raise ResourceNotFound("User not found.")
    return UserResponse.from_user(user)
