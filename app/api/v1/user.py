import logging

from fastapi import APIRouter, Depends
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.errors import AppError, InvalidPassword
from app.core.security import hash_password, verify_password
from app.models.category import Category
from app.models.user import User
from app.schemas.auth import Envelope
from app.schemas.user import (
    ProfileOut, ProfileEnvelope, ProfileUpdateIn, ChangePasswordIn,
    TwoFAManageIn, TwoFAManageOut, TwoFAStatusOut,
)
from app.api.deps import get_current_user, require_two_factor_session
from app.services import two_factor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/user", tags=["user"])

def _profile(user: User) -> ProfileOut:
    return ProfileOut(
        id=user.id,
        email=user.email,
        name=user.name,
        image=user.image,
        currency=user.currency or "USD",
        two_factor_enabled=bool(user.two_factor_enabled),
        has_password=bool(user.hashed_password),
    )

# ---------- profile ----------
@router.get("/profile", response_model=ProfileEnvelope)
async def get_profile(current_user: User = Depends(get_current_user)):
    return ProfileEnvelope(user=_profile(current_user))

@router.put("/profile", response_model=ProfileEnvelope)
async def update_profile(
    body: ProfileUpdateIn,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    for field, value in body.model_dump(exclude_unset=True).items():
        setattr(current_user, field, value)
    await db.commit()
    return ProfileEnvelope(message="Profile updated successfully", user=_profile(current_user))

@router.post("/change-password", response_model=Envelope)
async def change_password(
    body: ChangePasswordIn,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if not current_user.hashed_password:
        raise AppError("Password change not available for OAuth accounts")
    if not verify_password(body.current_password, current_user.hashed_password):
        raise InvalidPassword("Current password is incorrect")
    if verify_password(body.new_password, current_user.hashed_password):
        raise AppError("New password must be different from current password")

    current_user.hashed_password = hash_password(body.new_password)
    await db.commit()
    logger.info("Password changed for user %s", current_user.id)
    return Envelope(message="Password changed successfully")

@router.delete("/delete-account", response_model=Envelope)
async def delete_account(
    current_user: User = Depends(require_two_factor_session),
    db: AsyncSession = Depends(get_db),
):
    await db.execute(delete(Category).where(Category.user_id == current_user.id))
    await db.delete(current_user)
    await db.commit()
    logger.info("Account deleted: %s", current_user.id)
    return Envelope(message="Account deleted successfully")

# ---------- 2FA ----------
@router.get("/2fa-status", response_model=TwoFAStatusOut)
async def twofa_status(current_user: User = Depends(get_current_user)):
    st = two_factor.get_status(current_user)
    return TwoFAStatusOut(
        state=st.state.value,
        enabled=st.enabled,
        has_backup_codes=st.backup_codes_remaining > 0,
        backup_codes_remaining=st.backup_codes_remaining,
    )

@router.post("/2fa-manage", response_model=TwoFAManageOut, response_model_exclude_none=True)
async def twofa_manage(
    body: TwoFAManageIn,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if body.action == "setup":
        setup = await two_factor.begin_setup(db, current_user)
        return TwoFAManageOut(
            message="Scan the QR code with your authenticator app",
            secret=setup.secret,
            qr_code=setup.qr_code,
            otpauth_url=setup.otpauth_url,
        )

    if body.action == "verify":
        if not body.token:
            raise AppError("Verification token is required")
        codes = await two_factor.confirm_setup(db, current_user, body.token)
        return TwoFAManageOut(message="2FA enabled successfully", backup_codes=codes)

    # disable
    if not body.password:
        raise AppError("Password is required to disable 2FA")
    await two_factor.disable(db, current_user, body.password, body.token)
    return TwoFAManageOut(message="2FA disabled successfully")
