## File: backend/app/auth/dependencies.py
# Resolves the calling driver from the bearer token claims and exposes a
# role guard for admin-only endpoints.

from typing import List, Optional

from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from pydantic import BaseModel

from app.common.enums import Role, SubscriptionTier
from app.core.security import decode_token


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")


class CurrentUser(BaseModel):
    id: str
    email: Optional[str] = None
    role: Role = Role.DRIVER
    tier: SubscriptionTier = SubscriptionTier.FREE


def require_role(allowed_roles: List[str]):
    def wrapper(user: CurrentUser):
        if user.role not in allowed_roles:
            raise HTTPException(status_code=403, detail="Permission denied")
        return user
    return wrapper


async def get_current_user(token: str = Depends(oauth2_scheme)) -> CurrentUser:
    try:
        payload = decode_token(token)
    except JWTError:
        raise HTTPException(status_code=403, detail="Could not validate credentials")

    user_id = payload.get("sub")
    if user_id is None:
        raise HTTPException(status_code=401, detail="Invalid token")

    try:
        return CurrentUser(
            id=user_id,
            email=payload.get("email"),
            role=payload.get("role") or Role.DRIVER,
            tier=payload.get("tier") or SubscriptionTier.FREE,
        )
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token claims")


def effective_tier(user: CurrentUser, profile: Optional[dict]) -> SubscriptionTier:
    """Tier stored on the profile by billing updates, else the token claim."""
    stored = (profile or {}).get("subscriptionTier")
    if not stored:
        return user.tier
    try:
        return SubscriptionTier(stored)
    except ValueError:
        return user.tier
