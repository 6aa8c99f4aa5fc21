from typing import Literal

from pydantic import BaseModel, EmailStr, Field, field_validator

from app.core.security import password_policy_errors
from app.schemas.auth import Envelope


class ProfileOut(BaseModel):
    id: str
    email: EmailStr
    name: str | None = None
    image: str | None = None
    currency: str = "USD"
    two_factor_enabled: bool = False
    has_password: bool = False


class ProfileEnvelope(Envelope):
    user: ProfileOut


class ProfileUpdateIn(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    image: str | None = Field(default=None, max_length=512)
    currency: str | None = Field(default=None, min_length=3, max_length=3)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("Name must be a non-empty string")
        return v

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, v: str | None) -> str | None:
        return v.upper() if v else v


class ChangePasswordIn(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str

    @field_validator("new_password")
    @classmethod
    def _strong_password(cls, v: str) -> str:
        errors = password_policy_errors(v)
        if errors:
            raise ValueError("; ".join(errors))
        return v


class TwoFAManageIn(BaseModel):
    action: Literal["setup", "verify", "disable"]
    token: str | None = None
    password: str | None = None


class TwoFAManageOut(Envelope):
    secret: str | None = None
    qr_code: str | None = None
    otpauth_url: str | None = None
    backup_codes: list[str] | None = None


class TwoFAStatusOut(Envelope):
    state: Literal["disabled", "pending_verification", "enabled"]
    enabled: bool
    has_backup_codes: bool
    backup_codes_remaining: int
