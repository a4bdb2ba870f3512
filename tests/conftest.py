"""Pytest configuration and fixtures for the access-control engine tests."""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.database.engine import enable_sqlite_foreign_keys, init_db
from app.features.audit.hooks import RecordingAuditHook
from app.features.permissions.resolver import PermissionResolver
from app.features.permissions.service import AssociationManager, PermissionStore, RoleStore
from app.features.users.directory import DatabaseIdentityDirectory
from app.features.users.models import User


ACTOR_ID = "admin-actor"


@pytest_asyncio.fixture
async def engine():
    """In-memory SQLite database with foreign keys enforced."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_foreign_keys(engine)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def audit():
    """Audit collaborator that keeps events in memory."""
    return RecordingAuditHook()


@pytest.fixture
def permission_store(db, audit):
    return PermissionStore(db, audit, actor_id=ACTOR_ID)


@pytest.fixture
def role_store(db, audit):
    return RoleStore(db, audit, actor_id=ACTOR_ID)


@pytest.fixture
def associations(db, audit):
    return AssociationManager(db, audit, actor_id=ACTOR_ID, identity=DatabaseIdentityDirectory(db))


@pytest.fixture
def resolver(db):
    return PermissionResolver(db)


@pytest.fixture
def make_user(db):
    """Factory inserting a user row with a chosen id."""
    async def _make_user(user_id: str, is_admin: bool = False) -> User:
        user = User(
            id=user_id,
            appwrite_id=f"appwrite-{user_id}",
            email=f"{user_id}@acme.io",
            name=user_id.upper(),
            is_admin=is_admin,
        )
        db.add(user)
        await db.commit()
        return user
    return _make_user


@pytest.fixture
def make_permission(permission_store):
    """Factory creating a permission named after its resource type and action."""
    async def _make_permission(resource_type: str, action: str, name: str | None = None):
        return await permission_store.create(
            name=name or f"{action.lower()}:{resource_type.lower()}",
            resource_type=resource_type,
            action=action,
        )
    return _make_permission
