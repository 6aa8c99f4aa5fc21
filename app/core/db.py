# app/core/db.py
from collections.abc import AsyncGenerator
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase
from app.core.config import settings

_url = settings.async_database_url
# sqlite (tests/dev) has no server connection to ping
engine = create_async_engine(_url, echo=settings.DB_ECHO, pool_pre_ping=not _url.startswith("sqlite"))
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

class Base(DeclarativeBase):
    pass

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with SessionLocal() as session:
        yield session
