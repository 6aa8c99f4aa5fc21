import hashlib
import logging
from urllib.parse import quote

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import (
    EmailAlreadyRegistered,
    InvalidCredentials,
    RateLimited,
    SocialAccountOnly,
)
from app.core.rate_limit import LOGIN_SCOPE, RateLimiter
from app.core.security import hash_password, verify_password
from app.models.category import Category, CategoryType
from app.models.user import User

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = [
    ("Salary", "💼", "#22c55e", CategoryType.INCOME),
    ("Freelance", "💻", "#10b981", CategoryType.INCOME),
    ("Investments", "📈", "#059669", CategoryType.INCOME),
    ("Other Income", "💰", "#047857", CategoryType.INCOME),
    ("Food & Dining", "🍽️", "#ef4444", CategoryType.EXPENSE),
    ("Transportation", "🚗", "#f97316", CategoryType.EXPENSE),
    ("Shopping", "🛒", "#eab308", CategoryType.EXPENSE),
    ("Entertainment", "🎬", "#a855f7", CategoryType.EXPENSE),
    ("Bills & Utilities", "🏠", "#3b82f6", CategoryType.EXPENSE),
    ("Healthcare", "🏥", "#06b6d4", CategoryType.EXPENSE),
    ("Education", "📚", "#8b5cf6", CategoryType.EXPENSE),
    ("Other Expenses", "💸", "#dc2626", CategoryType.EXPENSE),
]

AVATAR_STYLES = ("avataaars", "personas", "initials", "fun-emoji")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def avatar_url(email: str) -> str:
    # same email always lands on the same style
    idx = int(hashlib.sha256(email.encode()).hexdigest(), 16) % len(AVATAR_STYLES)
    return f"https://api.dicebear.com/7.x/{AVATAR_STYLES[idx]}/svg?seed={quote(email)}"


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    res = await db.execute(select(User).where(User.email == normalize_email(email)))
    return res.scalar_one_or_none()


async def get_user_by_id(db: AsyncSession, user_id: str) -> User | None:
    return await db.get(User, user_id)


def default_categories(user_id: str) -> list[Category]:
    return [
        Category(user_id=user_id, name=name, icon=icon, color=color, type=kind)
        for name, icon, color, kind in DEFAULT_CATEGORIES
    ]


async def create_user(db: AsyncSession, email: str, password: str, name: str | None = None) -> User:
    email = normalize_email(email)
    if await get_user_by_email(db, email):
        raise EmailAlreadyRegistered()

    user = User(
        email=email,
        name=name or email.split("@")[0],
        hashed_password=hash_password(password),
        image=avatar_url(email),
    )
    db.add(user)
    try:
        await db.flush()
        db.add_all(default_categories(user.id))
        await db.commit()
    except IntegrityError:
        # lost a race against another registration of the same email
        await db.rollback()
        raise EmailAlreadyRegistered()
    await db.refresh(user)
    logger.info("New user registered: %s (ID: %s)", user.email, user.id)
    return user


async def count_login_attempt(limiter: RateLimiter, email: str) -> None:
    email = normalize_email(email)
    attempt = await limiter.hit(email, LOGIN_SCOPE)
    if not attempt.allowed:
        logger.warning("Rate limit exceeded for email: %s", email)
        raise RateLimited("Too many login attempts. Please try again later.", attempt.retry_after)


async def clear_login_attempts(limiter: RateLimiter, email: str) -> None:
    """Called once every factor of a sign-in has been accepted."""
    await limiter.reset(normalize_email(email), LOGIN_SCOPE)


async def authenticate(db: AsyncSession, limiter: RateLimiter, email: str, password: str) -> User:
    """Password check counted against the per-email attempt limit.

    The counter is left alone on success; the caller clears it with
    clear_login_attempts after the second factor, if any.
    """
    email = normalize_email(email)
    await count_login_attempt(limiter, email)

    user = await get_user_by_email(db, email)
    if not user:
        logger.warning("Login attempt for non-existent user: %s", email)
        raise InvalidCredentials()
    if not user.hashed_password:
        logger.warning("User %s attempted password login without a password", email)
        raise SocialAccountOnly()
    if not verify_password(password, user.hashed_password):
        logger.warning("Invalid password attempt for user: %s", email)
        raise InvalidCredentials()

    return user
