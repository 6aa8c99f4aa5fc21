"""Shared fixtures: in-memory SQLite, an ASGI client and user factories."""

from __future__ import annotations

import os

os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("TWOFA_ENCRYPTION_KEY", "test-2fa-encryption-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pyotp
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.backup_codes import hash_backup_codes
from app.core.crypto import encrypt_secret
from app.core.db import Base, get_db
from app.core.rate_limit import MemoryRateLimitStore, RateLimiter, RateLimitRule
from app.core.security import create_access_token, hash_password
from app.main import app
from app.models.user import User

PASSWORD = "Str0ng!Pass"

# generous limits so API tests never trip them unless they mean to
RELAXED = RateLimitRule(1000, 60)


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def limiter():
    return RateLimiter(MemoryRateLimitStore(), default=RELAXED)


@pytest_asyncio.fixture
async def client(session_maker, limiter):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    previous = app.state.rate_limiter
    app.state.rate_limiter = limiter
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.state.rate_limiter = previous
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    async def _make(
        email: str = "ana@example.com",
        password: str | None = PASSWORD,
        totp_secret: str | None = None,
        enabled: bool = False,
        backup_codes: list[str] | None = None,
    ) -> User:
        user = User(
            email=email,
            name=email.split("@")[0],
            hashed_password=hash_password(password) if password else None,
            two_factor_secret=encrypt_secret(totp_secret) if totp_secret else None,
            two_factor_enabled=enabled,
            backup_codes=hash_backup_codes(backup_codes or []),
        )
        db.add(user)
        await db.commit()
        return user

    return _make


def auth_headers(user: User, tfa: bool = False) -> dict[str, str]:
    token = create_access_token(subject=user.id, extra={"tfa": tfa})
    return {"Authorization": f"Bearer {token}"}


def totp_now(secret: str) -> str:
    return pyotp.TOTP(secret).now()
