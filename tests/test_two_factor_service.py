"""Tests for the 2FA enrollment/verification state machine."""

from __future__ import annotations

import time

import pyotp
import pytest
from sqlalchemy import update

from app.core.backup_codes import hash_backup_code
from app.core.crypto import decrypt_secret
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
from app.models.user import User
from app.services import two_factor
from app.services.two_factor import TwoFactorState

from conftest import PASSWORD, totp_now


async def test_full_enrollment(db, make_user):
    user = await make_user()
    assert two_factor.get_state(user) is TwoFactorState.DISABLED

    setup = await two_factor.begin_setup(db, user)
    assert setup.qr_code.startswith("data:image/png;base64,")
    assert setup.otpauth_url.startswith("otpauth://totp/")
    assert two_factor.get_state(user) is TwoFactorState.PENDING_VERIFICATION
    # only ciphertext is stored
    assert user.two_factor_secret != setup.secret
    assert decrypt_secret(user.two_factor_secret) == setup.secret

    codes = await two_factor.confirm_setup(db, user, totp_now(setup.secret))
    assert len(codes) == 10
    assert user.two_factor_enabled is True
    assert two_factor.get_state(user) is TwoFactorState.ENABLED
    assert user.backup_codes == [hash_backup_code(c) for c in codes]
    assert not set(codes) & set(user.backup_codes)


async def test_wrong_code_keeps_pending(db, make_user):
    user = await make_user()
    setup = await two_factor.begin_setup(db, user)
    stale = pyotp.TOTP(setup.secret).at(time.time() - 3600)

    with pytest.raises(InvalidTwoFactorCode):
        await two_factor.confirm_setup(db, user, stale)
    assert user.two_factor_enabled is False
    assert two_factor.get_state(user) is TwoFactorState.PENDING_VERIFICATION


async def test_cannot_confirm_without_setup(db, make_user):
    user = await make_user()
    with pytest.raises(TwoFactorSetupNotInitiated):
        await two_factor.confirm_setup(db, user, "123456")
    assert user.two_factor_enabled is False


async def test_corrupted_secret_forces_restart(db, make_user):
    user = await make_user()
    user.two_factor_secret = "bm90IGEgcmVhbCBjaXBoZXJ0ZXh0IGF0IGFsbA=="
    await db.commit()

    with pytest.raises(TwoFactorSetupCorrupted):
        await two_factor.confirm_setup(db, user, "123456")
    assert user.two_factor_enabled is False


async def test_resetup_invalidates_previous_secret(db, make_user):
    user = await make_user()
    first = await two_factor.begin_setup(db, user)
    second = await two_factor.begin_setup(db, user)
    assert first.secret != second.secret

    with pytest.raises(InvalidTwoFactorCode):
        await two_factor.confirm_setup(db, user, totp_now(first.secret))
    await two_factor.confirm_setup(db, user, totp_now(second.secret))
    assert user.two_factor_enabled is True


async def test_setup_rejected_when_enabled(db, make_user):
    secret = pyotp.random_base32()
    user = await make_user(totp_secret=secret, enabled=True)
    with pytest.raises(TwoFactorAlreadyEnabled):
        await two_factor.begin_setup(db, user)
    with pytest.raises(TwoFactorAlreadyEnabled):
        two_factor.prepare_setup(user)


async def test_setup_requires_password_credential(db, make_user):
    user = await make_user(password=None)
    with pytest.raises(PasswordCredentialRequired):
        await two_factor.begin_setup(db, user)
    assert user.two_factor_secret is None


async def test_prepare_setup_persists_nothing(db, make_user):
    user = await make_user()
    setup = two_factor.prepare_setup(user)
    assert len(setup.backup_codes) == 10
    assert user.two_factor_secret is None


async def test_enable_with_client_secret(db, make_user):
    user = await make_user()
    setup = two_factor.prepare_setup(user)

    with pytest.raises(InvalidTwoFactorCode):
        await two_factor.enable_with_secret(db, user, setup.secret, "000000", setup.backup_codes)
    assert user.two_factor_enabled is False

    await two_factor.enable_with_secret(
        db, user, setup.secret, totp_now(setup.secret), setup.backup_codes
    )
    assert user.two_factor_enabled is True
    assert decrypt_secret(user.two_factor_secret) == setup.secret
    assert await two_factor.verify_login_code(db, user, setup.backup_codes[0], is_backup_code=True)


async def test_login_code_totp_and_backup(db, make_user):
    secret = pyotp.random_base32()
    user = await make_user(totp_secret=secret, enabled=True, backup_codes=["AAAA1111", "BBBB2222"])

    assert await two_factor.verify_login_code(db, user, totp_now(secret))
    assert not await two_factor.verify_login_code(db, user, "AAAA1111")

    assert await two_factor.verify_login_code(db, user, "aaaa1111", is_backup_code=True)
    assert user.backup_codes == [hash_backup_code("BBBB2222")]
    # used once, gone for good
    assert not await two_factor.verify_login_code(db, user, "AAAA1111", is_backup_code=True)

    fresh = await db.get(User, user.id, populate_existing=True)
    assert fresh.backup_codes == [hash_backup_code("BBBB2222")]


async def test_login_code_requires_enabled(db, make_user):
    user = await make_user()
    with pytest.raises(TwoFactorNotEnabled):
        await two_factor.verify_login_code(db, user, "123456")


async def test_login_code_with_corrupted_secret(db, make_user):
    user = await make_user(totp_secret=pyotp.random_base32(), enabled=True)
    user.two_factor_secret = "garbage"
    await db.commit()
    with pytest.raises(TwoFactorSetupCorrupted):
        await two_factor.verify_login_code(db, user, "123456")


async def test_disable_requires_correct_password(db, make_user):
    secret = pyotp.random_base32()
    user = await make_user(totp_secret=secret, enabled=True, backup_codes=["AAAA1111"])

    with pytest.raises(InvalidPassword):
        await two_factor.disable(db, user, "wrong-password")
    assert user.two_factor_enabled is True
    assert user.two_factor_secret is not None

    await two_factor.disable(db, user, PASSWORD)
    assert user.two_factor_enabled is False
    assert user.two_factor_secret is None
    assert user.backup_codes == []
    assert two_factor.get_state(user) is TwoFactorState.DISABLED


async def test_disable_with_code(db, make_user):
    secret = pyotp.random_base32()
    user = await make_user(totp_secret=secret, enabled=True)

    with pytest.raises(InvalidTwoFactorCode):
        await two_factor.disable(db, user, PASSWORD, code="000000")
    assert user.two_factor_enabled is True

    await two_factor.disable(db, user, PASSWORD, code=totp_now(secret))
    assert user.two_factor_enabled is False


async def test_disable_with_code_and_corrupted_secret(db, make_user):
    user = await make_user(totp_secret=pyotp.random_base32(), enabled=True)
    user.two_factor_secret = "garbage"
    await db.commit()

    with pytest.raises(InvalidPassword):
        await two_factor.disable(db, user, "wrong-password", code="123456")
    assert user.two_factor_enabled is True

    await two_factor.disable(db, user, PASSWORD, code="123456")
    assert user.two_factor_enabled is False
    assert two_factor.get_state(user) is TwoFactorState.DISABLED


async def test_disable_when_not_enabled(db, make_user):
    user = await make_user()
    with pytest.raises(TwoFactorNotEnabled):
        await two_factor.disable(db, user, PASSWORD)


async def test_status_counts_backup_codes(db, make_user):
    user = await make_user(totp_secret=pyotp.random_base32(), enabled=True, backup_codes=["A1", "B2"])
    status = two_factor.get_status(user)
    assert status.enabled
    assert status.backup_codes_remaining == 2


async def test_concurrent_update_is_rejected(db, make_user):
    user = await make_user()
    # another request bumps the row version behind this session's back
    await db.execute(
        update(User)
        .where(User.id == user.id)
        .values(version=User.version + 1)
        .execution_options(synchronize_session=False)
    )

    with pytest.raises(ConcurrentUpdate):
        await two_factor.begin_setup(db, user)


async def test_backup_code_spent_once_across_sessions(session_maker, make_user):
    user = await make_user(totp_secret=pyotp.random_base32(), enabled=True, backup_codes=["AAAA1111"])

    async with session_maker() as first, session_maker() as second:
        a = await first.get(User, user.id)
        b = await second.get(User, user.id)

        assert await two_factor.verify_login_code(first, a, "AAAA1111", is_backup_code=True)
        # b still holds the code in its stale copy of the row
        with pytest.raises(ConcurrentUpdate):
            await two_factor.verify_login_code(second, b, "AAAA1111", is_backup_code=True)

    async with session_maker() as check:
        fresh = await check.get(User, user.id)
        assert fresh.backup_codes == []
        assert fresh.version == a.version
