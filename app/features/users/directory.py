"""
Identity lookups used when linking roles to users.
"""
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.users.models import User


class IdentityDirectory(Protocol):
    """Answers whether a user id is known to the identity provider."""

    async def user_exists(self, user_id: str) -> bool:
        ...


class DatabaseIdentityDirectory:
    """Checks the local `users` mirror."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def user_exists(self, user_id: str) -> bool:
        result = await self.db.execute(select(User.id).where(User.id == user_id))
        return result.first() is not None
