from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.rate_limit import RateLimiter
from app.core.security import decode_access_token
from app.models.user import User


bearer = HTTPBearer(auto_error=False)

async def get_token_payload(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
) -> dict:
    if creds is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    try:
        payload = decode_access_token(creds.credentials)
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")
    if not isinstance(payload.get("sub"), str) or not payload["sub"]:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")
    return payload

async def get_current_user(
    payload: dict = Depends(get_token_payload),
    db: AsyncSession = Depends(get_db),
) -> User:
    user = await db.get(User, payload["sub"])
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user

# --- second factor on the current token ---
async def require_two_factor_session(
    payload: dict = Depends(get_token_payload),
    user: User = Depends(get_current_user),
) -> User:
    """Accounts with 2FA must hold a token issued after a second factor."""
    if user.two_factor_enabled and not payload.get("tfa"):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Two-factor authentication required")
    return user

def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter
