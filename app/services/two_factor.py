"""Two-factor enrollment and verification.

A user's 2FA state is derived from two columns:

    two_factor_enabled  two_factor_secret   state
    False               None                DISABLED
    False               <ciphertext>        PENDING_VERIFICATION
    True                <ciphertext>        ENABLED

Every transition is committed as a single unit of work. ``User.version`` is
the optimistic lock: if another request changed the user in between, the
commit fails with ConcurrentUpdate instead of overwriting its result.
"""

import enum
import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.core import totp
from app.core.backup_codes import generate_backup_codes, hash_backup_codes, verify_and_consume
from app.core.config import settings
from app.core.crypto import decrypt_secret, encrypt_secret
from app.core.errors import (
    ConcurrentUpdate,
    InvalidPassword,
    InvalidTwoFactorCode,
    PasswordCredentialRequired,
    TwoFactorAlreadyEnabled,
    TwoFactorNotEnabled,
    TwoFactorSetupCorrupted,
    TwoFactorSetupNotInitiated,
)
from app.core.security import verify_password
from app.models.user import User

logger = logging.getLogger(__name__)


class TwoFactorState(str, enum.Enum):
    DISABLED = "disabled"
    PENDING_VERIFICATION = "pending_verification"
    ENABLED = "enabled"


@dataclass(frozen=True)
class TwoFactorStatus:
    state: TwoFactorState
    backup_codes_remaining: int

    @property
    def enabled(self) -> bool:
        return self.state is TwoFactorState.ENABLED


@dataclass(frozen=True)
class SetupResult:
    secret: str
    otpauth_url: str
    qr_code: str
    backup_codes: list[str]


def get_state(user: User) -> TwoFactorState:
    if user.two_factor_enabled:
        return TwoFactorState.ENABLED
    if user.two_factor_secret:
        return TwoFactorState.PENDING_VERIFICATION
    return TwoFactorState.DISABLED


def get_status(user: User) -> TwoFactorStatus:
    remaining = len(user.backup_codes or []) if user.two_factor_enabled else 0
    return TwoFactorStatus(get_state(user), remaining)


async def _commit(db: AsyncSession, user: User) -> None:
    try:
        await db.commit()
    except StaleDataError:
        await db.rollback()
        logger.warning("Concurrent 2FA update rejected for user %s", user.id)
        raise ConcurrentUpdate()


def _require_setup_allowed(user: User) -> None:
    if not user.hashed_password:
        raise PasswordCredentialRequired()
    if user.two_factor_enabled:
        raise TwoFactorAlreadyEnabled()


def _new_setup(user: User) -> SetupResult:
    secret = totp.generate_secret()
    uri = totp.build_enrollment_uri(user.email, secret, settings.APP_NAME)
    return SetupResult(
        secret=secret,
        otpauth_url=uri,
        qr_code=totp.render_qr_data_url(uri),
        backup_codes=generate_backup_codes(settings.BACKUP_CODE_COUNT),
    )


# --- enrollment ---

def prepare_setup(user: User) -> SetupResult:
    """Secret, QR and proposed backup codes, nothing persisted.

    The client sends them back to enable_with_secret together with a code.
    """
    _require_setup_allowed(user)
    return _new_setup(user)


async def begin_setup(db: AsyncSession, user: User) -> SetupResult:
    """DISABLED/PENDING -> PENDING with a fresh secret stored encrypted.

    Any earlier pending secret is overwritten and stops verifying. The
    returned backup codes are not used here; confirm_setup issues its own.
    """
    _require_setup_allowed(user)
    setup = _new_setup(user)
    user.two_factor_secret = encrypt_secret(setup.secret)
    user.backup_codes = []
    await _commit(db, user)
    logger.info("2FA setup started for user %s", user.id)
    return setup


async def confirm_setup(db: AsyncSession, user: User, code: str) -> list[str]:
    """PENDING -> ENABLED. Returns the plaintext backup codes, once."""
    if user.two_factor_enabled:
        raise TwoFactorAlreadyEnabled()
    if not user.two_factor_secret:
        raise TwoFactorSetupNotInitiated()

    secret = decrypt_secret(user.two_factor_secret)
    if not secret:
        logger.warning("2FA setup for user %s could not be decrypted", user.id)
        raise TwoFactorSetupCorrupted()

    if not totp.verify_code(code, secret):
        raise InvalidTwoFactorCode()

    codes = generate_backup_codes(settings.BACKUP_CODE_COUNT)
    user.backup_codes = hash_backup_codes(codes)
    user.two_factor_enabled = True
    await _commit(db, user)
    logger.info("2FA enabled for user %s", user.id)
    return codes


async def enable_with_secret(
    db: AsyncSession, user: User, secret: str, code: str, backup_codes: list[str]
) -> None:
    """Enable 2FA with a secret and backup codes held by the client."""
    _require_setup_allowed(user)
    if not totp.verify_code(code, secret):
        raise InvalidTwoFactorCode()

    user.two_factor_secret = encrypt_secret(secret)
    user.backup_codes = hash_backup_codes(backup_codes)
    user.two_factor_enabled = True
    await _commit(db, user)
    logger.info("2FA enabled for user %s", user.id)


# --- disable ---

async def disable(
    db: AsyncSession,
    user: User,
    password: str,
    code: str | None = None,
    is_backup_code: bool = False,
) -> None:
    """ENABLED -> DISABLED after re-checking the password (and code, if given)."""
    if not user.two_factor_enabled:
        raise TwoFactorNotEnabled()
    if not user.hashed_password:
        raise PasswordCredentialRequired()
    if not verify_password(password, user.hashed_password):
        logger.warning("Wrong password on 2FA disable for user %s", user.id)
        raise InvalidPassword()

    if code is not None and not await _disable_code_ok(db, user, code, is_backup_code):
        raise InvalidTwoFactorCode("Invalid 2FA code")

    user.two_factor_enabled = False
    user.two_factor_secret = None
    user.backup_codes = []
    await _commit(db, user)
    logger.info("2FA disabled for user %s", user.id)


# --- login ---

async def verify_login_code(
    db: AsyncSession,
    user: User,
    code: str,
    is_backup_code: bool = False,
    commit: bool = True,
) -> bool:
    """Check a TOTP or backup code for an ENABLED user.

    A matching backup code is consumed; with commit=False the removal is
    left for the caller's commit.
    """
    if not user.two_factor_enabled:
        raise TwoFactorNotEnabled()

    if is_backup_code:
        check = verify_and_consume(code, list(user.backup_codes or []))
        if not check.valid:
            return False
        user.backup_codes = check.remaining_hashes
        if commit:
            await _commit(db, user)
        logger.info("Backup code used by user %s (%d left)", user.id, len(check.remaining_hashes))
        return True

    if not user.two_factor_secret:
        raise TwoFactorSetupCorrupted()
    secret = decrypt_secret(user.two_factor_secret)
    if not secret:
        logger.warning("2FA secret for user %s could not be decrypted", user.id)
        raise TwoFactorSetupCorrupted()
    return totp.verify_code(code, secret)


async def _disable_code_ok(db: AsyncSession, user: User, code: str, is_backup_code: bool) -> bool:
    try:
        return await verify_login_code(db, user, code, is_backup_code, commit=False)
    except TwoFactorSetupCorrupted:
        # password already checked; an unreadable secret must not lock 2FA on
        logger.warning("Disabling 2FA for user %s despite an unreadable secret", user.id)
        return True
