"""
Audit log table written by DatabaseAuditHook.
"""
from typing import Any, Dict
from sqlalchemy import String, JSON
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, UlidPrimaryKeyMixin, ULID_LENGTH


class AuditLog(Base, UlidPrimaryKeyMixin, TimestampMixin):
    """
    One row per successful access-control mutation.

    `user_id` is the acting user. It is a plain column rather than a foreign
    key so the trail survives user removal.
    """
    __tablename__ = "audit_logs"
    
    user_id: Mapped[str | None] = mapped_column(String(ULID_LENGTH), nullable=True, index=True)
    
    # Action details
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    
    # {"before": {...}, "after": {...}}
    details: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    
    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, user_id={self.user_id}, action={self.action}, resource={self.resource_type})>"
