"""
Permission and Role models plus their link tables for flat RBAC.

Link tables carry foreign keys without ON DELETE CASCADE: endpoint deletion
clears links explicitly, inside the same transaction, in the service layer.
"""
from datetime import datetime, timezone
from sqlalchemy import String, ForeignKey, Table, Column, Text, DateTime
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, UlidPrimaryKeyMixin, ULID_LENGTH


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Association Tables
# ============================================================================

# Role grants permission; (role_id, permission_id) is unique
role_permissions = Table(
    "role_permissions",
    Base.metadata,
    Column("role_id", String(ULID_LENGTH), ForeignKey("roles.id"), primary_key=True),
    Column("permission_id", String(ULID_LENGTH), ForeignKey("permissions.id"), primary_key=True, index=True),
    Column("assigned_at", DateTime(timezone=True), nullable=False, default=_utcnow),
)

# User holds role; (user_id, role_id) is unique
user_roles = Table(
    "user_roles",
    Base.metadata,
    Column("user_id", String(ULID_LENGTH), ForeignKey("users.id"), primary_key=True),
    Column("role_id", String(ULID_LENGTH), ForeignKey("roles.id"), primary_key=True, index=True),
    Column("assigned_at", DateTime(timezone=True), nullable=False, default=_utcnow),
    Column("assigned_by_id", String(ULID_LENGTH), nullable=True),
)


# ============================================================================
# Core Models
# ============================================================================

class Permission(Base, UlidPrimaryKeyMixin, TimestampMixin):
    """
    A single allowed operation on a class of resource.

    Examples:
    - name="read:documents", resource_type="DOCUMENT", action="READ"
    - name="invoices:approve", resource_type="INVOICE", action="APPROVE"
    """
    __tablename__ = "permissions"
    
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    resource_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    
    def __repr__(self) -> str:
        return (
            f"<Permission(id={self.id}, name={self.name!r}, "
            f"resource_type={self.resource_type}, action={self.action})>"
        )


class Role(Base, UlidPrimaryKeyMixin, TimestampMixin):
    """
    A named bundle of permissions.

    Examples: admin, editor, invoice_approver, auditor
    """
    __tablename__ = "roles"
    
    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    
    # Read-only view over role_permissions; links are written with Core statements
    permissions: Mapped[list["Permission"]] = relationship(
        "Permission",
        secondary=role_permissions,
        order_by="Permission.name",
        viewonly=True,
        lazy="selectin"
    )
    
    def __repr__(self) -> str:
        return f"<Role(id={self.id}, name={self.name!r})>"
