"""
Seed script to populate default permissions and roles.

Run this script after database initialization to create:
- Default permissions for the business modules
- Default roles
- Initial role-permission assignments

Existing names are left untouched, so the script can be re-run safely.

Usage:
    uv run python -m scripts.seed_permissions
"""
import asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import AsyncSessionLocal, init_db
from app.features.audit.hooks import AuditHook, LoggingAuditHook
from app.features.permissions.exceptions import AlreadyAssignedError, DuplicateNameError
from app.features.permissions.service import AssociationManager, PermissionStore, RoleStore
from app.utils import get_logger


log = get_logger(__name__)


RESOURCE_ACTIONS = {
    "CONTRACT": ["CREATE", "READ", "UPDATE", "DELETE", "SIGN"],
    "INVOICE": ["CREATE", "READ", "UPDATE", "DELETE", "APPROVE", "SEND"],
    "INVESTMENT": ["CREATE", "READ", "UPDATE", "DELETE"],
    "EMPLOYEE": ["CREATE", "READ", "UPDATE", "DELETE"],
    "TASK": ["CREATE", "READ", "UPDATE", "DELETE", "ASSIGN"],
    "DOCUMENT": ["CREATE", "READ", "UPDATE", "DELETE"],
    "PERMISSION": ["CREATE", "READ", "UPDATE", "DELETE", "ASSIGN"],
    "ROLE": ["CREATE", "READ", "UPDATE", "DELETE", "ASSIGN"],
    "AUDIT": ["READ"],
}


def permission_name(resource_type: str, action: str) -> str:
    return f"{action.lower()}:{resource_type.lower()}s"


DEFAULT_PERMISSIONS = [
    (permission_name(resource_type, action), resource_type, action, f"{action.title()} {resource_type.lower()} records")
    for resource_type, actions in RESOURCE_ACTIONS.items()
    for action in actions
]


DEFAULT_ROLES = {
    "system_admin": {
        "description": "System administrator with all permissions",
        "permissions": "ALL",  # Special case - gets all permissions
    },
    "finance_manager": {
        "description": "Owns invoicing and investments",
        "permissions": [
            ("INVOICE", "CREATE"), ("INVOICE", "READ"), ("INVOICE", "UPDATE"),
            ("INVOICE", "APPROVE"), ("INVOICE", "SEND"),
            ("INVESTMENT", "CREATE"), ("INVESTMENT", "READ"), ("INVESTMENT", "UPDATE"),
            ("CONTRACT", "READ"),
        ],
    },
    "contract_manager": {
        "description": "Drafts and signs contracts",
        "permissions": [
            ("CONTRACT", "CREATE"), ("CONTRACT", "READ"), ("CONTRACT", "UPDATE"), ("CONTRACT", "SIGN"),
            ("DOCUMENT", "CREATE"), ("DOCUMENT", "READ"), ("DOCUMENT", "UPDATE"),
        ],
    },
    "hr_manager": {
        "description": "Manages employee records and task assignment",
        "permissions": [
            ("EMPLOYEE", "CREATE"), ("EMPLOYEE", "READ"), ("EMPLOYEE", "UPDATE"), ("EMPLOYEE", "DELETE"),
            ("TASK", "CREATE"), ("TASK", "READ"), ("TASK", "UPDATE"), ("TASK", "ASSIGN"),
        ],
    },
    "editor": {
        "description": "Creates and edits documents",
        "permissions": [("DOCUMENT", "CREATE"), ("DOCUMENT", "READ"), ("DOCUMENT", "UPDATE")],
    },
    "staff": {
        "description": "Works on assigned tasks",
        "permissions": [("TASK", "READ"), ("TASK", "UPDATE"), ("DOCUMENT", "READ")],
    },
    "auditor": {
        "description": "Read-only access across modules",
        "permissions": [
            ("CONTRACT", "READ"), ("INVOICE", "READ"), ("INVESTMENT", "READ"),
            ("EMPLOYEE", "READ"), ("DOCUMENT", "READ"),
            ("PERMISSION", "READ"), ("ROLE", "READ"), ("AUDIT", "READ"),
        ],
    },
}


async def seed_permissions(db: AsyncSession, audit: AuditHook) -> dict[str, str]:
    """
    Create default permissions.
    
    Returns:
        Dictionary mapping permission names to permission ids
    """
    log.info("Creating default permissions...")
    store = PermissionStore(db, audit)
    permissions_map = {}
    created = 0
    
    for name, resource_type, action, description in DEFAULT_PERMISSIONS:
        try:
            permission = await store.create(
                name=name, resource_type=resource_type, action=action, description=description
            )
            created += 1
        except DuplicateNameError:
            log.debug("Permission '%s' already exists, skipping", name)
            permission = await store.find_by_name(name)
        permissions_map[name] = permission.id
    
    log.info("Created %d permissions (%d already present)", created, len(permissions_map) - created)
    return permissions_map


async def seed_roles(db: AsyncSession, audit: AuditHook, permissions_map: dict[str, str]) -> dict[str, str]:
    """
    Create default roles and assign their permissions.

    Links that already exist are skipped, so roles created by an earlier run
    pick up permissions added to DEFAULT_ROLES since.

    Returns:
        Dictionary mapping role names to role ids
    """
    log.info("Creating default roles...")
    store = RoleStore(db, audit)
    associations = AssociationManager(db, audit)
    roles_map = {}
    
    for role_name, role_config in DEFAULT_ROLES.items():
        try:
            role = await store.create(name=role_name, description=role_config["description"])
        except DuplicateNameError:
            log.debug("Role '%s' already exists", role_name)
            role = await store.find_by_name(role_name)
        role_id = role.id
        roles_map[role_name] = role_id
        
        if role_config["permissions"] == "ALL":
            wanted = list(permissions_map.values())
        else:
            wanted = []
            for resource_type, action in role_config["permissions"]:
                name = permission_name(resource_type, action)
                if name in permissions_map:
                    wanted.append(permissions_map[name])
                else:
                    log.warning("Permission '%s' not found for role '%s'", name, role_name)
        
        assigned = 0
        for permission_id in wanted:
            try:
                await associations.assign_permission_to_role(role_id, permission_id)
                assigned += 1
            except AlreadyAssignedError:
                continue
        log.info("Role '%s': %d new permission link(s)", role_name, assigned)
    
    return roles_map


async def main():
    """Main function to seed permissions and roles."""
    log.info("Starting permission seeding...")
    
    # Initialize database tables first
    await init_db()
    
    async with AsyncSessionLocal() as db:
        audit = LoggingAuditHook()
        permissions_map = await seed_permissions(db, audit)
        await seed_roles(db, audit, permissions_map)
    
    log.info("Permission seeding completed successfully!")
    for role_name, role_config in DEFAULT_ROLES.items():
        log.info("  - %s: %s", role_name, role_config["description"])


if __name__ == "__main__":
    asyncio.run(main())
