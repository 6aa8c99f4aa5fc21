# app/core/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore")

    APP_NAME: str = "CashLens"
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    JWT_SECRET: str = Field(...)
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # key for the TOTP secrets at rest; falls back to JWT_SECRET
    TWOFA_ENCRYPTION_KEY: str | None = None
    BACKUP_CODE_COUNT: int = 10

    DATABASE_URL: str | None = None
    DB_HOST: str = "localhost"
    DB_PORT: int = 3306
    DB_USER: str = "cashlens"
    DB_PASSWORD: str = ""
    DB_NAME: str = "cashlens"
    DB_ECHO: bool = False

    # peers whose X-Forwarded-For header is believed; empty means none
    TRUSTED_PROXIES: list[str] = []

    # --- rate limits (max requests per window) ---
    RATE_LIMIT_AUTH_MAX: int = 5
    RATE_LIMIT_AUTH_WINDOW_SECONDS: int = 15 * 60
    RATE_LIMIT_USER_MAX: int = 20
    RATE_LIMIT_USER_WINDOW_SECONDS: int = 60
    RATE_LIMIT_DEFAULT_MAX: int = 50
    RATE_LIMIT_DEFAULT_WINDOW_SECONDS: int = 60
    LOGIN_MAX_ATTEMPTS: int = 5
    LOGIN_WINDOW_SECONDS: int = 15 * 60
    REGISTER_MAX_ATTEMPTS: int = 3
    REGISTER_WINDOW_SECONDS: int = 60 * 60

    @property
    def async_database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (f"mysql+aiomysql://{self.DB_USER}:{self.DB_PASSWORD}"
                f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}?charset=utf8mb4")

    @property
    def two_factor_encryption_key(self) -> str:
        return self.TWOFA_ENCRYPTION_KEY or self.JWT_SECRET


settings = Settings()  # type: ignore[call-arg]
