from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from typing import Optional

from shared.models.user import User
from apps.billing.services import BillingServices
from apps.billing.services.transaction import read_only

security = HTTPBearer(auto_error=False)


def get_services(request: Request) -> BillingServices:
    return request.app.state.services


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    services: BillingServices = Depends(get_services),
) -> User:
    """Resolve the bearer token to an active user"""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token"
        )

    async with read_only(services.session_factory) as session:
        result = await session.execute(
            select(User)
            .where(User.api_token == credentials.credentials)
            .where(User.is_active == True)
        )
        user = result.scalar_one_or_none()

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token"
        )
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return user
