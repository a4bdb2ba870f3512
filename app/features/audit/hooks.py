"""
Audit collaborators notified after every successful access-control mutation.

The engine never reaches for a global sink: stores and the association
manager receive an AuditHook when they are built.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from app.features.audit.models import AuditLog
from app.utils import get_logger


log = get_logger(__name__)


# Action names
PERMISSION_CREATED = "PERMISSION_CREATED"
PERMISSION_UPDATED = "PERMISSION_UPDATED"
PERMISSION_DELETED = "PERMISSION_DELETED"
ROLE_CREATED = "ROLE_CREATED"
ROLE_UPDATED = "ROLE_UPDATED"
ROLE_DELETED = "ROLE_DELETED"
ROLE_PERMISSION_ASSIGNED = "ROLE_PERMISSION_ASSIGNED"
ROLE_PERMISSION_REMOVED = "ROLE_PERMISSION_REMOVED"
USER_ROLE_ASSIGNED = "USER_ROLE_ASSIGNED"
USER_ROLE_REMOVED = "USER_ROLE_REMOVED"

# Resource types
RESOURCE_PERMISSION = "permission"
RESOURCE_ROLE = "role"
RESOURCE_USER = "user"


@dataclass(frozen=True)
class AuditEvent:
    action: str
    resource_type: str
    resource_id: Optional[str]
    actor_id: Optional[str]
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None

    def details(self) -> Dict[str, Any]:
        details: Dict[str, Any] = {}
        if self.before is not None:
            details["before"] = self.before
        if self.after is not None:
            details["after"] = self.after
        return details


class AuditHook(Protocol):
    async def record(self, event: AuditEvent) -> None:
        ...


class LoggingAuditHook:
    """Writes each event to the application log only."""

    async def record(self, event: AuditEvent) -> None:
        log.info(
            "Audit: user=%s action=%s resource=%s:%s",
            event.actor_id, event.action, event.resource_type, event.resource_id
        )


class DatabaseAuditHook(LoggingAuditHook):
    """
    Persists each event as an AuditLog row in its own commit.

    Runs after the mutation has committed, so a failure here never undoes the
    mutation; it propagates to the caller.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(self, event: AuditEvent) -> None:
        self.db.add(AuditLog(
            user_id=event.actor_id,
            action=event.action,
            resource_type=event.resource_type,
            resource_id=event.resource_id,
            details=event.details() or None,
        ))
        await self.db.commit()
        await super().record(event)


@dataclass
class RecordingAuditHook:
    """Keeps events in memory. Useful for tests and dry runs."""

    events: List[AuditEvent] = field(default_factory=list)

    async def record(self, event: AuditEvent) -> None:
        self.events.append(event)

    def actions(self) -> List[str]:
        return [event.action for event in self.events]
