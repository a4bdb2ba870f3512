"""
FastAPI dependencies for authentication and authorization.
"""
from typing import Annotated, Optional
from datetime import datetime, timezone
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.users.models import User
from app.features.users.auth import verify_jwt_token, get_appwrite_user
from app.features.users.directory import DatabaseIdentityDirectory
from app.utils import get_logger


log = get_logger(__name__)

security = HTTPBearer(auto_error=False)


async def _local_user(db: AsyncSession, appwrite_user_id: str) -> User:
    """Find the local mirror of an Appwrite account, creating it on first sight."""
    result = await db.execute(select(User).where(User.appwrite_id == appwrite_user_id))
    user = result.scalar_one_or_none()
    if user is None:
        account = await get_appwrite_user(appwrite_user_id)
        user = User(
            appwrite_id=appwrite_user_id,
            email=account.get("email", ""),
            name=account.get("name", "Unknown"),
        )
        db.add(user)
        log.info("Registering local user for Appwrite account %s", appwrite_user_id)
    return user


async def get_current_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> User:
    """
    Resolve the bearer token to a local, active User.

    Raises:
        HTTPException: 401 without a usable token, 403 for deactivated accounts
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    
    claims = verify_jwt_token(credentials.credentials)
    appwrite_user_id = claims.get("userId")
    if not appwrite_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )
    
    user = await _local_user(db, appwrite_user_id)
    user.last_login_at = datetime.now(timezone.utc)
    await db.commit()
    await db.refresh(user)
    
    if not user.is_active:
        log.info("Deactivated user %s refused", user.id)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated",
        )
    
    return user


async def get_current_admin_user(
    user: Annotated[User, Depends(get_current_user)]
) -> User:
    """Gate for administrative mutations of permissions, roles and links."""
    if not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )
    return user


def get_identity_directory(
    db: Annotated[AsyncSession, Depends(get_db)]
) -> DatabaseIdentityDirectory:
    return DatabaseIdentityDirectory(db)


def get_authorization_header(request: Request) -> str:
    """Rate limit key for slowapi: the caller's Authorization header."""
    return request.headers.get("Authorization", "") or "anonymous"
