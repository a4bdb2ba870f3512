"""HTTP tests for the permission, role, assignment, check and audit routes."""

import pytest
import pytest_asyncio
from fastapi import Depends, HTTPException, Request
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.main import app


@pytest_asyncio.fixture
async def client(session_factory, make_user):
    """
    Client whose bearer token is simply the local user id.

    Seeds an admin ("admin") and a regular user ("u1").
    """
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def override_get_current_user(request: Request, db: AsyncSession = Depends(get_db)) -> User:
        auth = request.headers.get("Authorization", "")
        if not auth.startswith("Bearer "):
            raise HTTPException(status_code=401, detail="Not authenticated")
        user = (await db.execute(select(User).where(User.id == auth[len("Bearer "):]))).scalar_one_or_none()
        if user is None:
            raise HTTPException(status_code=401, detail="Invalid token payload")
        return user

    await make_user("admin", is_admin=True)
    await make_user("u1")

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


ADMIN = {"Authorization": "Bearer admin"}
USER = {"Authorization": "Bearer u1"}


async def _create_permission(client, name="read:documents", resource_type="DOCUMENT", action="READ"):
    response = await client.post(
        "/permissions/permissions",
        json={"name": name, "resource_type": resource_type, "action": action},
        headers=ADMIN,
    )
    assert response.status_code == 201, response.text
    return response.json()


async def _create_role(client, name="editor"):
    response = await client.post("/permissions/roles", json={"name": name}, headers=ADMIN)
    assert response.status_code == 201, response.text
    return response.json()


class TestAuthentication:

    @pytest.mark.asyncio
    async def test_missing_token(self, client):
        response = await client.get("/permissions/permissions")

        assert response.status_code == 401
        assert response.json() == {"error": "Not authenticated"}

    @pytest.mark.asyncio
    async def test_real_dependency_rejects_missing_token(self, client):
        del app.dependency_overrides[get_current_user]

        response = await client.get("/permissions/roles")

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_mutation_requires_admin(self, client):
        response = await client.post(
            "/permissions/permissions",
            json={"name": "read:documents", "resource_type": "DOCUMENT", "action": "READ"},
            headers=USER,
        )

        assert response.status_code == 403
        assert response.json() == {"error": "Admin privileges required"}

    @pytest.mark.asyncio
    async def test_health_is_public(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestPermissionRoutes:

    @pytest.mark.asyncio
    async def test_crud(self, client):
        created = await _create_permission(client)

        fetched = await client.get(f"/permissions/permissions/{created['id']}", headers=USER)
        assert fetched.status_code == 200
        assert fetched.json()["name"] == "read:documents"

        updated = await client.put(
            f"/permissions/permissions/{created['id']}",
            json={"description": "Read any document"},
            headers=ADMIN,
        )
        assert updated.status_code == 200
        assert updated.json()["description"] == "Read any document"
        assert updated.json()["action"] == "READ"

        deleted = await client.delete(f"/permissions/permissions/{created['id']}", headers=ADMIN)
        assert deleted.status_code == 204

        missing = await client.get(f"/permissions/permissions/{created['id']}", headers=USER)
        assert missing.status_code == 404
        assert missing.json() == {"error": f'Permission with ID "{created["id"]}" not found'}

    @pytest.mark.asyncio
    async def test_duplicate_name_conflict(self, client):
        await _create_permission(client)

        response = await client.post(
            "/permissions/permissions",
            json={"name": "read:documents", "resource_type": "DOCUMENT", "action": "READ"},
            headers=ADMIN,
        )

        assert response.status_code == 409
        assert "already exists" in response.json()["error"]

    @pytest.mark.asyncio
    async def test_invalid_name(self, client):
        response = await client.post(
            "/permissions/permissions",
            json={"name": "read documents!", "resource_type": "DOCUMENT", "action": "READ"},
            headers=ADMIN,
        )

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "Invalid request"
        assert "name" in body["fields"]

    @pytest.mark.asyncio
    async def test_filter_by_resource_type(self, client):
        await _create_permission(client)
        await _create_permission(client, name="read:invoices", resource_type="INVOICE")

        response = await client.get("/permissions/permissions", params={"resource_type": "INVOICE"}, headers=USER)

        assert [p["name"] for p in response.json()] == ["read:invoices"]

    @pytest.mark.asyncio
    async def test_delete_missing(self, client):
        response = await client.delete("/permissions/permissions/nope", headers=ADMIN)

        assert response.status_code == 404


class TestAssignmentRoutes:

    @pytest.mark.asyncio
    async def test_grant_flow(self, client):
        permission = await _create_permission(client)
        role = await _create_role(client)

        linked = await client.post(
            f"/permissions/roles/{role['id']}/permissions",
            json={"permission_id": permission["id"]},
            headers=ADMIN,
        )
        assert linked.status_code == 201
        assert linked.json() == {"message": "Permission assigned to role"}

        again = await client.post(
            f"/permissions/roles/{role['id']}/permissions",
            json={"permission_id": permission["id"]},
            headers=ADMIN,
        )
        assert again.status_code == 409
        assert again.json() == {"error": "Permission already assigned to role"}

        assigned = await client.post("/permissions/users/u1/roles", json={"role_id": role["id"]}, headers=ADMIN)
        assert assigned.status_code == 201

        mine = await client.get("/permissions/users/u1/permissions", headers=USER)
        assert mine.status_code == 200
        body = mine.json()
        assert [r["name"] for r in body["roles"]] == ["editor"]
        assert [p["name"] for p in body["permissions"]] == ["read:documents"]

    @pytest.mark.asyncio
    async def test_unknown_user(self, client):
        role = await _create_role(client)

        response = await client.post("/permissions/users/ghost/roles", json={"role_id": role["id"]}, headers=ADMIN)

        assert response.status_code == 404
        assert response.json() == {"error": 'User with ID "ghost" not found'}

    @pytest.mark.asyncio
    async def test_remove_missing_link(self, client):
        role = await _create_role(client)

        response = await client.delete(f"/permissions/users/u1/roles/{role['id']}", headers=ADMIN)

        assert response.status_code == 409
        assert response.json() == {"error": "Role not assigned to user"}

    @pytest.mark.asyncio
    async def test_role_delete_cascades(self, client):
        permission = await _create_permission(client)
        role = await _create_role(client)
        await client.post(
            f"/permissions/roles/{role['id']}/permissions",
            json={"permission_id": permission["id"]},
            headers=ADMIN,
        )
        await client.post("/permissions/users/u1/roles", json={"role_id": role["id"]}, headers=ADMIN)

        deleted = await client.delete(f"/permissions/roles/{role['id']}", headers=ADMIN)
        assert deleted.status_code == 204

        roles = await client.get("/permissions/users/u1/roles", headers=USER)
        assert roles.json() == []

    @pytest.mark.asyncio
    async def test_other_users_permissions_hidden(self, client):
        response = await client.get("/permissions/users/admin/permissions", headers=USER)

        assert response.status_code == 403


class TestCheckRoute:

    @pytest.mark.asyncio
    async def test_check_by_action(self, client):
        permission = await _create_permission(client)
        role = await _create_role(client)
        await client.post(
            f"/permissions/roles/{role['id']}/permissions",
            json={"permission_id": permission["id"]},
            headers=ADMIN,
        )
        await client.post("/permissions/users/u1/roles", json={"role_id": role["id"]}, headers=ADMIN)

        granted = await client.post(
            "/permissions/check", json={"resource_type": "DOCUMENT", "action": "READ"}, headers=USER
        )
        denied = await client.post(
            "/permissions/check", json={"resource_type": "DOCUMENT", "action": "DELETE"}, headers=USER
        )

        assert granted.json() == {"granted": True, "reason": None}
        assert denied.json() == {
            "granted": False,
            "reason": "User does not have DELETE permission for DOCUMENT",
        }

    @pytest.mark.asyncio
    async def test_check_by_permission_id(self, client):
        permission = await _create_permission(client)

        response = await client.post(
            "/permissions/check", json={"user_id": "u1", "permission_id": permission["id"]}, headers=ADMIN
        )

        assert response.status_code == 200
        assert response.json()["granted"] is False

    @pytest.mark.asyncio
    async def test_check_requires_one_form(self, client):
        response = await client.post("/permissions/check", json={"resource_type": "DOCUMENT"}, headers=USER)

        assert response.status_code == 400


class TestAuditRoute:

    @pytest.mark.asyncio
    async def test_mutations_are_logged(self, client):
        permission = await _create_permission(client)
        role = await _create_role(client)

        response = await client.get("/audit-logs", headers=ADMIN)

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 2
        assert {item["action"] for item in body["items"]} == {"PERMISSION_CREATED", "ROLE_CREATED"}
        assert {item["resource_id"] for item in body["items"]} == {permission["id"], role["id"]}
        assert all(item["user_id"] == "admin" for item in body["items"])

    @pytest.mark.asyncio
    async def test_filter_by_action(self, client):
        await _create_permission(client)
        await _create_role(client)

        response = await client.get("/audit-logs", params={"action": "ROLE_CREATED"}, headers=ADMIN)

        assert [item["action"] for item in response.json()["items"]] == ["ROLE_CREATED"]

    @pytest.mark.asyncio
    async def test_admin_only(self, client):
        response = await client.get("/audit-logs", headers=USER)

        assert response.status_code == 403


class TestUserRoutes:

    @pytest.mark.asyncio
    async def test_access_summary(self, client):
        permission = await _create_permission(client)
        role = await _create_role(client)
        await client.post(
            f"/permissions/roles/{role['id']}/permissions",
            json={"permission_id": permission["id"]},
            headers=ADMIN,
        )
        await client.post("/permissions/users/u1/roles", json={"role_id": role["id"]}, headers=ADMIN)

        response = await client.get("/users/me/access", headers=USER)

        assert response.json() == {"user_id": "u1", "is_admin": False, "permissions": ["read:documents"]}

    @pytest.mark.asyncio
    async def test_list_role_holders(self, client):
        role = await _create_role(client)
        await client.post("/permissions/users/u1/roles", json={"role_id": role["id"]}, headers=ADMIN)

        everyone = await client.get("/users/", headers=ADMIN)
        holders = await client.get("/users/", params={"role_id": role["id"]}, headers=ADMIN)

        assert {u["id"] for u in everyone.json()} == {"admin", "u1"}
        assert [u["id"] for u in holders.json()] == ["u1"]

    @pytest.mark.asyncio
    async def test_list_users_requires_admin(self, client):
        response = await client.get("/users/", headers=USER)

        assert response.status_code == 403
