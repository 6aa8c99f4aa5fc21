from pydantic import BaseModel, EmailStr, Field, field_validator

from app.core.security import password_policy_errors


class Envelope(BaseModel):
    success: bool = True
    message: str = ""


class RegisterIn(BaseModel):
    email: EmailStr
    password: str
    name: str | None = Field(default=None, min_length=3, max_length=255)

    @field_validator("password")
    @classmethod
    def _strong_password(cls, v: str) -> str:
        errors = password_policy_errors(v)
        if errors:
            raise ValueError("; ".join(errors))
        return v


class LoginIn(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)
    otp: str | None = None          # required when 2FA is active
    is_backup_code: bool = False


class UserOut(BaseModel):
    id: str
    email: EmailStr
    name: str | None = None
    image: str | None = None

    class Config:
        from_attributes = True


class RegisterOut(Envelope):
    user: UserOut


class TokenOut(Envelope):
    access_token: str
    token_type: str = "bearer"


# --- 2FA ---

class TwoFASetupData(BaseModel):
    secret: str
    qr_code: str
    backup_codes: list[str]


class TwoFASetupOut(Envelope):
    data: TwoFASetupData


class TwoFAEnableIn(BaseModel):
    secret: str = Field(..., min_length=16)
    token: str = Field(..., min_length=1)
    backup_codes: list[str] = Field(..., min_length=1)


class TwoFADisableIn(BaseModel):
    token: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    is_backup_code: bool = False


class TwoFAVerifyIn(BaseModel):
    email: EmailStr
    token: str = Field(..., min_length=1)
    is_backup_code: bool = False


class TwoFAVerifyOut(Envelope):
    user_id: str
