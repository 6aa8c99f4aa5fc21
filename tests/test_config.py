"""Tests for configuration loading."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from app.core.config import Settings


def test_missing_jwt_secret_fails_fast(monkeypatch):
    monkeypatch.delenv("JWT_SECRET", raising=False)
    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_database_url_override():
    s = Settings(_env_file=None, JWT_SECRET="x", DATABASE_URL="sqlite+aiosqlite:///./dev.db")
    assert s.async_database_url == "sqlite+aiosqlite:///./dev.db"


def test_mysql_url_from_parts():
    s = Settings(
        _env_file=None,
        JWT_SECRET="x",
        DATABASE_URL=None,
        DB_HOST="db",
        DB_PORT=3307,
        DB_USER="u",
        DB_PASSWORD="p",
        DB_NAME="cash",
    )
    assert s.async_database_url == "mysql+aiomysql://u:p@db:3307/cash?charset=utf8mb4"


def test_defaults():
    s = Settings(_env_file=None, JWT_SECRET="x")
    assert s.APP_NAME == "CashLens"
    assert s.BACKUP_CODE_COUNT == 10
    assert s.LOGIN_MAX_ATTEMPTS == 5
