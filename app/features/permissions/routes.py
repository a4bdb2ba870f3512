"""
Permission management API routes.

Provides endpoints for managing permissions, roles, their assignments, and
permission checks. Domain errors raised by the engine are turned into
`{"error": ...}` responses by the handlers registered in app.main.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from app.core import config
from app.core.rate_limit import limiter
from app.features.permissions.dependencies import (
    get_association_manager,
    get_permission_resolver,
    get_permission_store,
    get_role_store,
)
from app.features.permissions.exceptions import NotFoundError
from app.features.permissions.resolver import PermissionResolver
from app.features.permissions.schemas import (
    AssignmentResponse,
    AssignPermissionToRole,
    AssignRoleToUser,
    PermissionCheckRequest,
    PermissionCheckResult,
    PermissionCreate,
    PermissionResponse,
    PermissionUpdate,
    RoleCreate,
    RoleResponse,
    RoleUpdate,
    RoleWithPermissions,
    UserPermissionsResponse,
)
from app.features.permissions.service import AssociationManager, PermissionStore, RoleStore
from app.features.users.dependencies import get_current_admin_user, get_current_user
from app.features.users.models import User


router = APIRouter()


def _ensure_self_or_admin(user_id: str, current_user: User) -> None:
    if user_id != current_user.id and not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized to view other users' permissions"
        )


# ============================================================================
# Permission Routes
# ============================================================================

@router.post("/permissions", response_model=PermissionResponse, status_code=status.HTTP_201_CREATED)
async def create_permission(
    permission: PermissionCreate,
    _admin: User = Depends(get_current_admin_user),
    store: PermissionStore = Depends(get_permission_store),
):
    """Create a new permission (admin only)."""
    return await store.create(
        name=permission.name,
        description=permission.description,
        resource_type=permission.resource_type,
        action=permission.action,
    )


@router.get("/permissions", response_model=List[PermissionResponse])
async def list_permissions(
    resource_type: Optional[str] = None,
    store: PermissionStore = Depends(get_permission_store),
):
    """List all permissions, optionally for one resource type."""
    if resource_type:
        return await store.list_by_resource_type(resource_type)
    return await store.list_all()


@router.get("/permissions/{permission_id}", response_model=PermissionResponse)
async def get_permission(
    permission_id: str,
    store: PermissionStore = Depends(get_permission_store),
):
    """Get a specific permission by ID."""
    permission = await store.get(permission_id)
    if permission is None:
        raise NotFoundError(f'Permission with ID "{permission_id}" not found')
    return permission


@router.put("/permissions/{permission_id}", response_model=PermissionResponse)
async def update_permission(
    permission_id: str,
    permission_update: PermissionUpdate,
    _admin: User = Depends(get_current_admin_user),
    store: PermissionStore = Depends(get_permission_store),
):
    """Update a permission (admin only)."""
    return await store.update(permission_id, **permission_update.model_dump(exclude_unset=True))


@router.delete("/permissions/{permission_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_permission(
    permission_id: str,
    _admin: User = Depends(get_current_admin_user),
    store: PermissionStore = Depends(get_permission_store),
):
    """Delete a permission and its role links (admin only)."""
    await store.delete(permission_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ============================================================================
# Role Routes
# ============================================================================

@router.post("/roles", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    role: RoleCreate,
    _admin: User = Depends(get_current_admin_user),
    store: RoleStore = Depends(get_role_store),
):
    """Create a new role (admin only)."""
    return await store.create(name=role.name, description=role.description)


@router.get("/roles", response_model=List[RoleWithPermissions])
async def list_roles(store: RoleStore = Depends(get_role_store)):
    """List all roles with their permissions."""
    return await store.list_all()


@router.get("/roles/{role_id}", response_model=RoleWithPermissions)
async def get_role(
    role_id: str,
    store: RoleStore = Depends(get_role_store),
):
    """Get a specific role with its permissions."""
    role = await store.get(role_id)
    if role is None:
        raise NotFoundError(f'Role with ID "{role_id}" not found')
    return role


@router.put("/roles/{role_id}", response_model=RoleWithPermissions)
async def update_role(
    role_id: str,
    role_update: RoleUpdate,
    _admin: User = Depends(get_current_admin_user),
    store: RoleStore = Depends(get_role_store),
):
    """Update a role (admin only)."""
    return await store.update(role_id, **role_update.model_dump(exclude_unset=True))


@router.delete("/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(
    role_id: str,
    _admin: User = Depends(get_current_admin_user),
    store: RoleStore = Depends(get_role_store),
):
    """Delete a role along with its permission and user links (admin only)."""
    await store.delete(role_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ============================================================================
# Role <-> Permission Routes
# ============================================================================

@router.get("/roles/{role_id}/permissions", response_model=List[PermissionResponse])
async def list_role_permissions(
    role_id: str,
    associations: AssociationManager = Depends(get_association_manager),
):
    """List the permissions a role grants."""
    return await associations.list_permissions_for_role(role_id)


@router.post(
    "/roles/{role_id}/permissions",
    response_model=AssignmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def assign_permission_to_role(
    role_id: str,
    assignment: AssignPermissionToRole,
    _admin: User = Depends(get_current_admin_user),
    associations: AssociationManager = Depends(get_association_manager),
):
    """Assign a permission to a role (admin only)."""
    await associations.assign_permission_to_role(role_id, assignment.permission_id)
    return AssignmentResponse(message="Permission assigned to role")


@router.delete("/roles/{role_id}/permissions/{permission_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_permission_from_role(
    role_id: str,
    permission_id: str,
    _admin: User = Depends(get_current_admin_user),
    associations: AssociationManager = Depends(get_association_manager),
):
    """Remove a permission from a role (admin only)."""
    await associations.remove_permission_from_role(role_id, permission_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ============================================================================
# User <-> Role Routes
# ============================================================================

@router.get("/users/{user_id}/roles", response_model=List[RoleWithPermissions])
async def list_user_roles(
    user_id: str,
    current_user: User = Depends(get_current_user),
    associations: AssociationManager = Depends(get_association_manager),
):
    """List the roles a user holds."""
    _ensure_self_or_admin(user_id, current_user)
    return await associations.list_roles_for_user(user_id)


@router.post(
    "/users/{user_id}/roles",
    response_model=AssignmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def assign_role_to_user(
    user_id: str,
    assignment: AssignRoleToUser,
    _admin: User = Depends(get_current_admin_user),
    associations: AssociationManager = Depends(get_association_manager),
):
    """Assign a role to a user (admin only)."""
    await associations.assign_role_to_user(user_id, assignment.role_id)
    return AssignmentResponse(message="Role assigned to user")


@router.delete("/users/{user_id}/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_role_from_user(
    user_id: str,
    role_id: str,
    _admin: User = Depends(get_current_admin_user),
    associations: AssociationManager = Depends(get_association_manager),
):
    """Remove a role from a user (admin only)."""
    await associations.remove_role_from_user(user_id, role_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ============================================================================
# Permission Check Routes
# ============================================================================

@router.get("/users/{user_id}/permissions", response_model=UserPermissionsResponse)
async def get_user_permissions(
    user_id: str,
    current_user: User = Depends(get_current_user),
    associations: AssociationManager = Depends(get_association_manager),
    resolver: PermissionResolver = Depends(get_permission_resolver),
):
    """A user's roles and effective permissions."""
    _ensure_self_or_admin(user_id, current_user)
    return UserPermissionsResponse(
        user_id=user_id,
        roles=[RoleWithPermissions.model_validate(r) for r in await associations.list_roles_for_user(user_id)],
        permissions=[PermissionResponse.model_validate(p) for p in await resolver.effective_permissions(user_id)],
    )


@router.post("/check", response_model=PermissionCheckResult)
@limiter.limit(config.CHECK_RATE_LIMIT)
async def check_permission(
    request: Request,
    check_request: PermissionCheckRequest,
    current_user: User = Depends(get_current_user),
    resolver: PermissionResolver = Depends(get_permission_resolver),
):
    """Check whether a user (the caller by default) holds a permission."""
    user_id = check_request.user_id or current_user.id
    _ensure_self_or_admin(user_id, current_user)

    if check_request.permission_id is not None:
        return await resolver.has_permission(user_id, check_request.permission_id)
    return await resolver.has_permission_by_action(user_id, check_request.resource_type, check_request.action)
