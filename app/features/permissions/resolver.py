"""
Effective permission resolution.

Pure queries over the committed link tables; nothing is cached, so every
call sees the latest assignments.
"""
from typing import Dict, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.permissions.models import Permission, role_permissions, user_roles
from app.features.permissions.schemas import PermissionCheckResult
from app.utils import get_logger


log = get_logger(__name__)


class PermissionResolver:
    """Answers what a user may do, from the roles they hold."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def effective_permissions(self, user_id: str) -> List[Permission]:
        """
        Union of the permissions of every role the user holds.

        A permission granted by several roles appears once. Empty when the
        user holds no roles.
        """
        stmt = (
            select(Permission)
            .join(role_permissions, role_permissions.c.permission_id == Permission.id)
            .join(user_roles, user_roles.c.role_id == role_permissions.c.role_id)
            .where(user_roles.c.user_id == user_id)
            .order_by(Permission.name)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)

        permissions_map: Dict[str, Permission] = {}
        for permission in result.scalars():
            permissions_map.setdefault(permission.id, permission)

        log.debug("User %s resolves to %d permission(s)", user_id, len(permissions_map))
        return list(permissions_map.values())

    async def has_permission(self, user_id: str, permission_id: str) -> PermissionCheckResult:
        permissions = await self.effective_permissions(user_id)
        if any(p.id == permission_id for p in permissions):
            return PermissionCheckResult(granted=True)

        log.debug("User %s denied permission %s", user_id, permission_id)
        return PermissionCheckResult(granted=False, reason="User does not have required permission")

    async def has_permission_by_action(
        self,
        user_id: str,
        resource_type: str,
        action: str,
    ) -> PermissionCheckResult:
        """
        Granted iff some effective permission matches both fields exactly.

        No wildcards, no prefix or case-insensitive matching.
        """
        permissions = await self.effective_permissions(user_id)
        if any(p.resource_type == resource_type and p.action == action for p in permissions):
            return PermissionCheckResult(granted=True)

        log.debug("User %s denied %s on %s", user_id, action, resource_type)
        return PermissionCheckResult(
            granted=False,
            reason=f"User does not have {action} permission for {resource_type}",
        )
