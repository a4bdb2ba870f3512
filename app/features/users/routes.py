"""
User routes: the caller's profile and access summary, and user lookups.
"""
from typing import Annotated, Optional
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.permissions.models import user_roles
from app.features.permissions.resolver import PermissionResolver
from app.features.permissions.dependencies import get_permission_resolver
from app.features.users.models import User
from app.features.users.schemas import UserAccess, UserResponse, UserPublic
from app.features.users.dependencies import get_current_admin_user, get_current_user


router = APIRouter(tags=["users"])


@router.get("/me", response_model=UserResponse)
async def get_current_user_profile(
    user: Annotated[User, Depends(get_current_user)]
):
    return user


@router.get("/me/access", response_model=UserAccess)
async def get_current_user_access(
    user: Annotated[User, Depends(get_current_user)],
    resolver: Annotated[PermissionResolver, Depends(get_permission_resolver)],
):
    """The caller's effective permission names."""
    permissions = await resolver.effective_permissions(user.id)
    return UserAccess(user_id=user.id, is_admin=user.is_admin, permissions=[p.name for p in permissions])


@router.get("/{user_id}", response_model=UserPublic)
async def get_user_by_id(
    user_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    _user: Annotated[User, Depends(get_current_user)]
):
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


@router.get("/", response_model=list[UserPublic])
async def list_users(
    db: Annotated[AsyncSession, Depends(get_db)],
    _admin: Annotated[User, Depends(get_current_admin_user)],
    role_id: Optional[str] = None,
    skip: int = 0,
    limit: int = 50
):
    """
    List active users (admin only).

    With `role_id`, only the holders of that role are returned.
    """
    stmt = select(User).where(User.is_active.is_(True))
    if role_id:
        stmt = stmt.join(user_roles, user_roles.c.user_id == User.id).where(user_roles.c.role_id == role_id)
    result = await db.execute(stmt.order_by(User.id).offset(skip).limit(limit))
    return result.scalars().all()
