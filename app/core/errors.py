from fastapi import status


class AppError(Exception):
    """Business rejection reported to the client as {success: false, message}."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    message: str = "Request could not be processed"

    def __init__(self, message: str | None = None, status_code: int | None = None):
        if message is not None:
            self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class UserNotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    message = "User not found"


class ConcurrentUpdate(AppError):
    status_code = status.HTTP_409_CONFLICT
    message = "Account was modified by another request, please try again"


class RateLimited(AppError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    message = "Too many requests. Please try again later."

    def __init__(self, message: str | None = None, retry_after: int | None = None):
        super().__init__(message)
        self.retry_after = retry_after


# --- accounts ---

class EmailAlreadyRegistered(AppError):
    status_code = status.HTTP_409_CONFLICT
    message = "An account with this email already exists. Please sign in instead."


class InvalidCredentials(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Invalid email or password"


class SocialAccountOnly(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Please sign in with your social account or reset your password"


# --- two-factor ---

class TwoFactorAlreadyEnabled(AppError):
    message = "2FA is already enabled"


class TwoFactorNotEnabled(AppError):
    message = "2FA is not enabled"


class PasswordCredentialRequired(AppError):
    message = "2FA is only available for email/password accounts"


class InvalidPassword(AppError):
    message = "Incorrect password"


class InvalidTwoFactorCode(AppError):
    message = "Invalid verification code"


class TwoFactorSetupNotInitiated(AppError):
    message = "2FA setup not initiated"


class TwoFactorSetupCorrupted(AppError):
    message = "2FA setup corrupted, please restart setup"
