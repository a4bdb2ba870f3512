"""
FastAPI dependencies for the access-control engine.

Implements:
- Construction of stores, the association manager and the resolver per request
- Route protection for other modules (`require_permission`)
"""
from typing import List, Tuple
from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.audit.hooks import AuditHook, DatabaseAuditHook
from app.features.permissions.resolver import PermissionResolver
from app.features.permissions.service import AssociationManager, PermissionStore, RoleStore
from app.features.users.dependencies import get_current_user, get_identity_directory
from app.features.users.directory import DatabaseIdentityDirectory
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


# ============================================================================
# Engine factories
# ============================================================================

def get_audit_hook(db: AsyncSession = Depends(get_db)) -> AuditHook:
    return DatabaseAuditHook(db)


def get_permission_store(
    db: AsyncSession = Depends(get_db),
    audit: AuditHook = Depends(get_audit_hook),
    current_user: User = Depends(get_current_user),
) -> PermissionStore:
    return PermissionStore(db, audit, actor_id=current_user.id)


def get_role_store(
    db: AsyncSession = Depends(get_db),
    audit: AuditHook = Depends(get_audit_hook),
    current_user: User = Depends(get_current_user),
) -> RoleStore:
    return RoleStore(db, audit, actor_id=current_user.id)


def get_association_manager(
    db: AsyncSession = Depends(get_db),
    audit: AuditHook = Depends(get_audit_hook),
    identity: DatabaseIdentityDirectory = Depends(get_identity_directory),
    current_user: User = Depends(get_current_user),
) -> AssociationManager:
    return AssociationManager(db, audit, actor_id=current_user.id, identity=identity)


def get_permission_resolver(db: AsyncSession = Depends(get_db)) -> PermissionResolver:
    return PermissionResolver(db)


# ============================================================================
# Route guards
# ============================================================================

def require_permission(resource_type: str, action: str):
    """
    FastAPI dependency to require a specific permission.

    Usage:
        @router.post("/invoices")
        async def create_invoice(
            user: User = Depends(require_permission("INVOICE", "CREATE"))
        ):
            # User has permission to create invoices
            pass

    Admins pass every check.

    Raises:
        HTTPException: 403 with the resolver's reason if the user lacks it
    """
    async def permission_dependency(
        current_user: User = Depends(get_current_user),
        resolver: PermissionResolver = Depends(get_permission_resolver),
    ) -> User:
        if current_user.is_admin:
            log.debug("User %s is admin - granted %s on %s", current_user.id, action, resource_type)
            return current_user

        check = await resolver.has_permission_by_action(current_user.id, resource_type, action)
        if not check.granted:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=check.reason)

        return current_user

    return permission_dependency


def require_any_permission(permissions: List[Tuple[str, str]]):
    """
    FastAPI dependency to require ANY of the specified (resource_type, action) pairs.

    Usage:
        @router.get("/reports")
        async def get_reports(
            user: User = Depends(require_any_permission([("REPORT", "READ"), ("REPORT", "ADMIN")]))
        ):
            pass
    """
    async def permission_dependency(
        current_user: User = Depends(get_current_user),
        resolver: PermissionResolver = Depends(get_permission_resolver),
    ) -> User:
        if current_user.is_admin:
            return current_user

        for resource_type, action in permissions:
            check = await resolver.has_permission_by_action(current_user.id, resource_type, action)
            if check.granted:
                return current_user

        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Permission denied: requires one of {permissions}"
        )

    return permission_dependency
