"""
Permission and role stores and the association manager.

Every mutation runs in its own transaction and reports an AuditEvent to the
injected hook only after it has committed. Uniqueness is enforced by the
datastore: inserts are attempted and constraint violations are translated
into domain errors, never pre-checked with a read.
"""
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, delete, insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from app.core.database.engine import atomic
from app.core.database.errors import IntegrityKind, classify_integrity_error
from app.features.audit import hooks
from app.features.audit.hooks import AuditEvent, AuditHook
from app.features.permissions.exceptions import (
    AlreadyAssignedError,
    DuplicateNameError,
    NotAssignedError,
    NotFoundError,
    ReferentialError,
)
from app.features.permissions.models import Permission, Role, role_permissions, user_roles
from app.features.permissions.schemas import PermissionResponse, RoleResponse, RoleWithPermissions
from app.features.users.directory import IdentityDirectory
from app.utils import get_logger


log = get_logger(__name__)


def permission_snapshot(permission: Permission) -> Dict[str, Any]:
    return PermissionResponse.model_validate(permission).model_dump(mode="json")


def role_snapshot(role: Role, with_permissions: bool = False) -> Dict[str, Any]:
    schema = RoleWithPermissions if with_permissions else RoleResponse
    return schema.model_validate(role).model_dump(mode="json")


class _AuditedService:
    def __init__(self, db: AsyncSession, audit: AuditHook, actor_id: Optional[str] = None):
        self.db = db
        self.audit = audit
        self.actor_id = actor_id

    async def _report(
        self,
        action: str,
        resource_type: str,
        resource_id: Optional[str],
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None,
    ) -> None:
        await self.audit.record(AuditEvent(
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            actor_id=self.actor_id,
            before=before,
            after=after,
        ))

    def _associations(self) -> "AssociationManager":
        return AssociationManager(self.db, self.audit, self.actor_id)


# ============================================================================
# Permission Store
# ============================================================================

class PermissionStore(_AuditedService):
    """Create, read, update and delete Permission records."""

    UPDATABLE_FIELDS = frozenset({"name", "description", "resource_type", "action"})
    REQUIRED_FIELDS = frozenset({"name", "resource_type", "action"})

    async def create(
        self,
        name: str,
        resource_type: str,
        action: str,
        description: Optional[str] = None,
    ) -> Permission:
        """
        Create a permission.

        Raises:
            DuplicateNameError: a permission with this name already exists
        """
        permission = Permission(name=name, description=description, resource_type=resource_type, action=action)
        try:
            async with atomic(self.db):
                self.db.add(permission)
        except IntegrityError as exc:
            if classify_integrity_error(exc) is IntegrityKind.UNIQUE:
                log.info("Permission name conflict: %s", name)
                raise DuplicateNameError(f'Permission with name "{name}" already exists') from exc
            raise

        created = await self._require(permission.id)
        log.info("Created permission %s (%s)", created.id, created.name)
        await self._report(
            hooks.PERMISSION_CREATED, hooks.RESOURCE_PERMISSION, created.id,
            after=permission_snapshot(created),
        )
        return created

    async def get(self, permission_id: str) -> Optional[Permission]:
        stmt = (
            select(Permission)
            .where(Permission.id == permission_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def find_by_name(self, name: str) -> Optional[Permission]:
        stmt = (
            select(Permission)
            .where(Permission.name == name)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def list_all(self) -> List[Permission]:
        """All permissions, newest first."""
        stmt = (
            select(Permission)
            .order_by(Permission.created_at.desc(), Permission.id.desc())
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_by_resource_type(self, resource_type: str) -> List[Permission]:
        """Permissions for one resource type, newest first."""
        stmt = (
            select(Permission)
            .where(Permission.resource_type == resource_type)
            .order_by(Permission.created_at.desc(), Permission.id.desc())
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def update(self, permission_id: str, **fields: Any) -> Permission:
        """
        Apply a partial update.

        Raises:
            NotFoundError: no permission with this id, including one deleted
                while the update was in flight
            DuplicateNameError: the new name belongs to another permission
            ValueError: unknown field, or null for a required one
        """
        unknown = set(fields) - self.UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update permission fields: {', '.join(sorted(unknown))}")
        nulled = sorted(key for key in self.REQUIRED_FIELDS & set(fields) if fields[key] is None)
        if nulled:
            raise ValueError(f"Cannot set permission fields to null: {', '.join(nulled)}")

        permission = await self._require(permission_id)
        before = permission_snapshot(permission)
        try:
            async with atomic(self.db):
                for key, value in fields.items():
                    setattr(permission, key, value)
        except StaleDataError as exc:
            raise NotFoundError(f'Permission with ID "{permission_id}" not found') from exc
        except IntegrityError as exc:
            if classify_integrity_error(exc) is IntegrityKind.UNIQUE:
                log.info("Permission name conflict on update: %s", fields.get("name"))
                raise DuplicateNameError(f'Permission with name "{fields.get("name")}" already exists') from exc
            raise

        updated = await self._require(permission_id)
        log.info("Updated permission %s fields=%s", permission_id, sorted(fields))
        await self._report(
            hooks.PERMISSION_UPDATED, hooks.RESOURCE_PERMISSION, permission_id,
            before=before, after=permission_snapshot(updated),
        )
        return updated

    async def delete(self, permission_id: str) -> None:
        """
        Delete a permission and every role link that references it.

        Both steps commit together or not at all.

        Raises:
            NotFoundError: no permission with this id
        """
        permission = await self._require(permission_id)
        before = permission_snapshot(permission)
        try:
            async with atomic(self.db):
                unlinked = await self._associations().clear_permission_links(permission_id)
                result = await self.db.execute(delete(Permission).where(Permission.id == permission_id))
                if result.rowcount == 0:
                    raise NotFoundError(f'Permission with ID "{permission_id}" not found')
        except IntegrityError as exc:
            if classify_integrity_error(exc) is IntegrityKind.FOREIGN_KEY:
                raise ReferentialError(
                    f'Permission "{permission_id}" was linked to a role while being deleted'
                ) from exc
            raise

        log.info("Deleted permission %s and %d role link(s)", permission_id, unlinked)
        await self._report(hooks.PERMISSION_DELETED, hooks.RESOURCE_PERMISSION, permission_id, before=before)

    async def _require(self, permission_id: str) -> Permission:
        permission = await self.get(permission_id)
        if permission is None:
            raise NotFoundError(f'Permission with ID "{permission_id}" not found')
        return permission


# ============================================================================
# Role Store
# ============================================================================

class RoleStore(_AuditedService):
    """Create, read, update and delete Role records."""

    UPDATABLE_FIELDS = frozenset({"name", "description"})
    REQUIRED_FIELDS = frozenset({"name"})

    async def create(self, name: str, description: Optional[str] = None) -> Role:
        """
        Create a role with no permissions.

        Raises:
            DuplicateNameError: a role with this name already exists
        """
        role = Role(name=name, description=description)
        try:
            async with atomic(self.db):
                self.db.add(role)
        except IntegrityError as exc:
            if classify_integrity_error(exc) is IntegrityKind.UNIQUE:
                log.info("Role name conflict: %s", name)
                raise DuplicateNameError(f'Role with name "{name}" already exists') from exc
            raise

        created = await self._require(role.id)
        log.info("Created role %s (%s)", created.id, created.name)
        await self._report(hooks.ROLE_CREATED, hooks.RESOURCE_ROLE, created.id, after=role_snapshot(created))
        return created

    async def get(self, role_id: str) -> Optional[Role]:
        """Role with its permission list, or None."""
        stmt = (
            select(Role)
            .where(Role.id == role_id)
            .options(selectinload(Role.permissions))
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def find_by_name(self, name: str) -> Optional[Role]:
        stmt = (
            select(Role)
            .where(Role.name == name)
            .options(selectinload(Role.permissions))
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def list_all(self) -> List[Role]:
        """All roles with their permissions, newest first."""
        stmt = (
            select(Role)
            .options(selectinload(Role.permissions))
            .order_by(Role.created_at.desc(), Role.id.desc())
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def update(self, role_id: str, **fields: Any) -> Role:
        """
        Apply a partial update.

        Raises:
            NotFoundError: no role with this id, including one deleted
                while the update was in flight
            DuplicateNameError: the new name belongs to another role
            ValueError: unknown field, or null for a required one
        """
        unknown = set(fields) - self.UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update role fields: {', '.join(sorted(unknown))}")
        nulled = sorted(key for key in self.REQUIRED_FIELDS & set(fields) if fields[key] is None)
        if nulled:
            raise ValueError(f"Cannot set role fields to null: {', '.join(nulled)}")

        role = await self._require(role_id)
        before = role_snapshot(role)
        try:
            async with atomic(self.db):
                for key, value in fields.items():
                    setattr(role, key, value)
        except StaleDataError as exc:
            raise NotFoundError(f'Role with ID "{role_id}" not found') from exc
        except IntegrityError as exc:
            if classify_integrity_error(exc) is IntegrityKind.UNIQUE:
                log.info("Role name conflict on update: %s", fields.get("name"))
                raise DuplicateNameError(f'Role with name "{fields.get("name")}" already exists') from exc
            raise

        updated = await self._require(role_id)
        log.info("Updated role %s fields=%s", role_id, sorted(fields))
        await self._report(
            hooks.ROLE_UPDATED, hooks.RESOURCE_ROLE, role_id,
            before=before, after=role_snapshot(updated),
        )
        return updated

    async def delete(self, role_id: str) -> None:
        """
        Delete a role after removing its permission links and user links.

        All three steps commit together or not at all, so no user is ever
        left holding a role that no longer exists.

        Raises:
            NotFoundError: no role with this id
        """
        role = await self._require(role_id)
        before = role_snapshot(role, with_permissions=True)
        try:
            async with atomic(self.db):
                permission_links, user_links = await self._associations().clear_role_links(role_id)
                result = await self.db.execute(delete(Role).where(Role.id == role_id))
                if result.rowcount == 0:
                    raise NotFoundError(f'Role with ID "{role_id}" not found')
        except IntegrityError as exc:
            if classify_integrity_error(exc) is IntegrityKind.FOREIGN_KEY:
                raise ReferentialError(f'Role "{role_id}" was linked while being deleted') from exc
            raise

        log.info(
            "Deleted role %s, %d permission link(s), %d user link(s)",
            role_id, permission_links, user_links
        )
        await self._report(hooks.ROLE_DELETED, hooks.RESOURCE_ROLE, role_id, before=before)

    async def _require(self, role_id: str) -> Role:
        role = await self.get(role_id)
        if role is None:
            raise NotFoundError(f'Role with ID "{role_id}" not found')
        return role


# ============================================================================
# Association Manager
# ============================================================================

class AssociationManager(_AuditedService):
    """
    Role-to-permission and user-to-role links.

    The composite primary keys on the link tables are the authority on
    duplication; there is no read before an insert.
    """

    def __init__(
        self,
        db: AsyncSession,
        audit: AuditHook,
        actor_id: Optional[str] = None,
        identity: Optional[IdentityDirectory] = None,
    ):
        super().__init__(db, audit, actor_id)
        self.identity = identity
        self.permissions = PermissionStore(db, audit, actor_id)
        self.roles = RoleStore(db, audit, actor_id)

    # ------------------------------------------------------------------
    # Role <-> Permission
    # ------------------------------------------------------------------

    async def assign_permission_to_role(self, role_id: str, permission_id: str) -> None:
        """
        Raises:
            NotFoundError: role or permission does not exist
            AlreadyAssignedError: the link already exists
            ReferentialError: an endpoint was deleted concurrently
        """
        await self._require_role(role_id)
        if await self.permissions.get(permission_id) is None:
            raise NotFoundError(f'Permission with ID "{permission_id}" not found')

        link = {"role_id": role_id, "permission_id": permission_id}
        try:
            async with atomic(self.db):
                await self.db.execute(insert(role_permissions).values(**link))
        except IntegrityError as exc:
            self._raise_link_conflict(exc, "Permission already assigned to role")

        log.info("Assigned permission %s to role %s", permission_id, role_id)
        await self._report(hooks.ROLE_PERMISSION_ASSIGNED, hooks.RESOURCE_ROLE, role_id, after=link)

    async def remove_permission_from_role(self, role_id: str, permission_id: str) -> None:
        """
        Raises:
            NotAssignedError: the role does not grant this permission
        """
        link = {"role_id": role_id, "permission_id": permission_id}
        async with atomic(self.db):
            result = await self.db.execute(
                delete(role_permissions).where(
                    role_permissions.c.role_id == role_id,
                    role_permissions.c.permission_id == permission_id,
                )
            )
            if result.rowcount == 0:
                raise NotAssignedError("Permission not assigned to role")

        log.info("Removed permission %s from role %s", permission_id, role_id)
        await self._report(hooks.ROLE_PERMISSION_REMOVED, hooks.RESOURCE_ROLE, role_id, before=link)

    async def list_permissions_for_role(self, role_id: str) -> List[Permission]:
        """
        Raises:
            NotFoundError: no role with this id
        """
        await self._require_role(role_id)
        stmt = (
            select(Permission)
            .join(role_permissions, role_permissions.c.permission_id == Permission.id)
            .where(role_permissions.c.role_id == role_id)
            .order_by(Permission.name)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # User <-> Role
    # ------------------------------------------------------------------

    async def assign_role_to_user(self, user_id: str, role_id: str) -> None:
        """
        Raises:
            NotFoundError: role does not exist, or the identity directory
                does not know the user
            AlreadyAssignedError: the user already holds the role
            ReferentialError: the user or role vanished before the insert
        """
        if self.identity is not None and not await self.identity.user_exists(user_id):
            raise NotFoundError(f'User with ID "{user_id}" not found')
        await self._require_role(role_id)

        link = {"user_id": user_id, "role_id": role_id}
        try:
            async with atomic(self.db):
                await self.db.execute(
                    insert(user_roles).values(assigned_by_id=self.actor_id, **link)
                )
        except IntegrityError as exc:
            self._raise_link_conflict(exc, "Role already assigned to user")

        log.info("Assigned role %s to user %s", role_id, user_id)
        await self._report(hooks.USER_ROLE_ASSIGNED, hooks.RESOURCE_USER, user_id, after=link)

    async def remove_role_from_user(self, user_id: str, role_id: str) -> None:
        """
        Raises:
            NotAssignedError: the user does not hold this role
        """
        link = {"user_id": user_id, "role_id": role_id}
        async with atomic(self.db):
            result = await self.db.execute(
                delete(user_roles).where(
                    user_roles.c.user_id == user_id,
                    user_roles.c.role_id == role_id,
                )
            )
            if result.rowcount == 0:
                raise NotAssignedError("Role not assigned to user")

        log.info("Removed role %s from user %s", role_id, user_id)
        await self._report(hooks.USER_ROLE_REMOVED, hooks.RESOURCE_USER, user_id, before=link)

    async def list_roles_for_user(self, user_id: str) -> List[Role]:
        """Roles the user holds, each with its own permission list."""
        stmt = (
            select(Role)
            .join(user_roles, user_roles.c.role_id == Role.id)
            .where(user_roles.c.user_id == user_id)
            .options(selectinload(Role.permissions))
            .order_by(Role.name)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Cascade helpers (run inside the caller's transaction)
    # ------------------------------------------------------------------

    async def clear_permission_links(self, permission_id: str) -> int:
        result = await self.db.execute(
            delete(role_permissions).where(role_permissions.c.permission_id == permission_id)
        )
        return result.rowcount

    async def clear_role_links(self, role_id: str) -> Tuple[int, int]:
        permission_links = await self.db.execute(
            delete(role_permissions).where(role_permissions.c.role_id == role_id)
        )
        user_links = await self.db.execute(
            delete(user_roles).where(user_roles.c.role_id == role_id)
        )
        return permission_links.rowcount, user_links.rowcount

    # ------------------------------------------------------------------

    async def _require_role(self, role_id: str) -> None:
        if await self.roles.get(role_id) is None:
            raise NotFoundError(f'Role with ID "{role_id}" not found')

    def _raise_link_conflict(self, exc: IntegrityError, duplicate_message: str) -> None:
        kind = classify_integrity_error(exc)
        if kind is IntegrityKind.UNIQUE:
            log.info("Link conflict: %s", duplicate_message)
            raise AlreadyAssignedError(duplicate_message) from exc
        if kind is IntegrityKind.FOREIGN_KEY:
            raise ReferentialError("Link references a permission, role or user that does not exist") from exc
        raise exc
