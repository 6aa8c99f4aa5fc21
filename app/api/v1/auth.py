import logging

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.errors import RateLimited, TwoFactorNotEnabled, UserNotFound
from app.core.middleware import client_ip
from app.core.rate_limit import REGISTER_SCOPE, RateLimiter
from app.core.security import create_access_token
from app.models.user import User
from app.schemas.auth import (
    Envelope, RegisterIn, RegisterOut, LoginIn, TokenOut, UserOut,
    TwoFASetupOut, TwoFASetupData, TwoFAEnableIn, TwoFADisableIn, TwoFAVerifyIn, TwoFAVerifyOut,
)
from app.api.deps import get_current_user, get_rate_limiter
from app.services import accounts, two_factor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

@router.post("/register", response_model=RegisterOut, status_code=201)
async def register(
    payload: RegisterIn,
    request: Request,
    db: AsyncSession = Depends(get_db),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    attempt = await limiter.hit(client_ip(request), REGISTER_SCOPE)
    if not attempt.allowed:
        raise RateLimited("Too many registration attempts. Please try again later.", attempt.retry_after)

    user = await accounts.create_user(db, payload.email, payload.password, payload.name)
    return RegisterOut(
        message="Account created successfully! You can now sign in with your credentials.",
        user=UserOut.model_validate(user),
    )

@router.post("/login", response_model=TokenOut)
async def login(
    payload: LoginIn,
    db: AsyncSession = Depends(get_db),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    user = await accounts.authenticate(db, limiter, payload.email, payload.password)

    # with 2FA on, the password alone is not enough
    if user.two_factor_enabled:
        if not payload.otp:
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"success": False, "message": "2FA code required", "requires_2fa": True},
            )
        if not await two_factor.verify_login_code(db, user, payload.otp, payload.is_backup_code):
            logger.warning("Invalid 2FA code at login for user %s", user.id)
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"success": False, "message": "Invalid verification code", "requires_2fa": True},
            )

    await accounts.clear_login_attempts(limiter, user.email)
    token = create_access_token(subject=user.id, extra={"tfa": user.two_factor_enabled})
    logger.info("Successful login for user: %s", user.email)
    return TokenOut(message="Signed in", access_token=token)

@router.post("/verify-2fa", response_model=TwoFAVerifyOut)
async def verify_two_factor(
    payload: TwoFAVerifyIn,
    db: AsyncSession = Depends(get_db),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    # no password on this route, so codes count against the login limit
    await accounts.count_login_attempt(limiter, payload.email)
    user = await accounts.get_user_by_email(db, payload.email)
    if not user:
        raise UserNotFound()
    if not user.two_factor_enabled:
        raise TwoFactorNotEnabled("2FA is not enabled for this user")

    if not await two_factor.verify_login_code(db, user, payload.token, payload.is_backup_code):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"success": False, "message": "Invalid verification code"},
        )
    await accounts.clear_login_attempts(limiter, user.email)
    return TwoFAVerifyOut(message="2FA verification successful", user_id=user.id)

# ---------- 2FA FLOW ----------
@router.get("/2fa", response_model=TwoFASetupOut)
async def twofa_setup(current_user: User = Depends(get_current_user)):
    setup = two_factor.prepare_setup(current_user)
    return TwoFASetupOut(
        data=TwoFASetupData(secret=setup.secret, qr_code=setup.qr_code, backup_codes=setup.backup_codes),
    )

@router.post("/2fa", response_model=Envelope)
async def twofa_enable(
    body: TwoFAEnableIn,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await two_factor.enable_with_secret(db, current_user, body.secret, body.token, body.backup_codes)
    return Envelope(message="2FA enabled successfully")

@router.delete("/2fa", response_model=Envelope)
async def twofa_disable(
    body: TwoFADisableIn,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await two_factor.disable(db, current_user, body.password, body.token, body.is_backup_code)
    return Envelope(message="2FA disabled successfully")
