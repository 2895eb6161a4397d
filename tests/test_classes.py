import pytest
from httpx import AsyncClient

from app.models.class_ import Class

pytestmark = pytest.mark.asyncio

CLASS_PASSWORD = "open-sesame"


class TestAdminAccess:
    """Admin routes require the admin key."""

    async def test_missing_key(self, client: AsyncClient):
        response = await client.post("/api/v1/classes/", json={"name": "X", "password": "pw"})
        assert response.status_code == 401
        assert response.json()["error_code"] == "UNAUTHORIZED"

    async def test_wrong_key(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/classes/",
            json={"name": "X", "password": "pw"},
            headers={"X-Admin-Key": "definitely-not-the-key"},
        )
        assert response.status_code == 403


class TestCreateClass:
    """Tests for creating classes."""

    async def test_create_class(self, client: AsyncClient, admin_headers: dict):
        response = await client.post(
            "/api/v1/classes/",
            json={"name": "  Operating Systems ", "password": "kernel"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "Operating Systems"
        assert data["capacity"] == 7
        assert data["reward_title"] == "Dinner with Professor"
        assert "password" not in data
        assert "password_hash" not in data

    async def test_duplicate_name(
        self, client: AsyncClient, admin_headers: dict, test_class: Class
    ):
        response = await client.post(
            "/api/v1/classes/",
            json={"name": test_class.name, "password": "pw"},
            headers=admin_headers,
        )
        assert response.status_code == 409
        assert response.json()["error_code"] == "DUPLICATE_NAME"

    async def test_negative_capacity_rejected(self, client: AsyncClient, admin_headers: dict):
        response = await client.post(
            "/api/v1/classes/",
            json={"name": "Bad", "password": "pw", "capacity": -1},
            headers=admin_headers,
        )
        assert response.status_code == 422


class TestReadClasses:
    """Tests for listing and fetching classes."""

    async def test_list_classes(self, client: AsyncClient, test_class: Class):
        response = await client.get("/api/v1/classes/")
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["items"][0]["id"] == test_class.id

    async def test_get_class(self, client: AsyncClient, test_class: Class):
        response = await client.get(f"/api/v1/classes/{test_class.id}")
        assert response.status_code == 200
        assert response.json()["capacity"] == 2

    async def test_get_missing_class(self, client: AsyncClient):
        response = await client.get("/api/v1/classes/missing")
        assert response.status_code == 404
        assert response.json()["error_code"] == "NOT_FOUND"


class TestDeleteClass:
    """Tests for the deletion preview and atomic delete."""

    async def test_preview_and_delete(
        self,
        client: AsyncClient,
        admin_headers: dict,
        test_class: Class,
        create_students,
        open_opportunity,
    ):
        students = await create_students(3)
        for student in students:
            await client.post(
                "/api/v1/bids/",
                json={
                    "student_id": student.id,
                    "opportunity_id": open_opportunity.id,
                    "class_password": CLASS_PASSWORD,
                },
            )

        preview = await client.get(
            f"/api/v1/classes/{test_class.id}/deletion-preview", headers=admin_headers
        )
        assert preview.status_code == 200
        assert preview.json()["record_counts"]["bids"] == 3

        response = await client.delete(f"/api/v1/classes/{test_class.id}", headers=admin_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["deleted_counts"]["students"] == 3
        assert data["deleted_counts"]["opportunities"] == 1
        assert data["deleted_counts"]["bids"] == 3
        assert data["audit_log_id"]

        assert (await client.get(f"/api/v1/classes/{test_class.id}")).status_code == 404

    async def test_delete_missing_class(self, client: AsyncClient, admin_headers: dict):
        response = await client.delete("/api/v1/classes/missing", headers=admin_headers)
        assert response.status_code == 404


class TestStudents:
    """Tests for roster endpoints."""

    async def test_import_and_list(
        self, client: AsyncClient, admin_headers: dict, test_class: Class
    ):
        response = await client.post(
            f"/api/v1/classes/{test_class.id}/students",
            json={
                "students": [
                    {"name": "Ada", "email": "ada@example.edu", "student_number": "1"},
                    {"name": "Ada", "email": "ADA@example.edu", "student_number": "1"},
                ]
            },
            headers=admin_headers,
        )
        assert response.status_code == 200
        data = response.json()
        assert len(data["created"]) == 1
        assert data["created"][0]["has_used_token"] is False
        assert data["skipped"][0]["row"] == 2

        listing = await client.get(
            f"/api/v1/classes/{test_class.id}/students", headers=admin_headers
        )
        assert listing.json()["total"] == 1

    async def test_invalid_email_rejected(
        self, client: AsyncClient, admin_headers: dict, test_class: Class
    ):
        response = await client.post(
            f"/api/v1/classes/{test_class.id}/students",
            json={"students": [{"name": "Ada", "email": "not-an-email"}]},
            headers=admin_headers,
        )
        assert response.status_code == 422

    async def test_restore_token(
        self,
        client: AsyncClient,
        admin_headers: dict,
        create_students,
        open_opportunity,
    ):
        student = (await create_students(1))[0]
        await client.post(
            "/api/v1/bids/",
            json={
                "student_id": student.id,
                "opportunity_id": open_opportunity.id,
                "class_password": CLASS_PASSWORD,
            },
        )

        refused = await client.post(
            f"/api/v1/students/{student.id}/token/restore", json={}, headers=admin_headers
        )
        assert refused.status_code == 409

        response = await client.post(
            f"/api/v1/students/{student.id}/token/restore",
            json={"opportunity_id": open_opportunity.id, "note": "Bid by mistake"},
            headers=admin_headers,
        )
        assert response.status_code == 200
        assert response.json()["tokens_remaining"] == 1

        status = await client.get(
            "/api/v1/bids/status",
            params={"student_id": student.id, "opportunity_id": open_opportunity.id},
        )
        assert status.json()["has_bid"] is False

    async def test_token_history(
        self,
        client: AsyncClient,
        admin_headers: dict,
        create_students,
        open_opportunity,
    ):
        student = (await create_students(1))[0]
        await client.post(
            "/api/v1/bids/",
            json={
                "student_id": student.id,
                "opportunity_id": open_opportunity.id,
                "class_password": CLASS_PASSWORD,
            },
        )
        await client.post(
            f"/api/v1/students/{student.id}/token/restore",
            json={"opportunity_id": open_opportunity.id, "note": "Bid by mistake"},
            headers=admin_headers,
        )

        response = await client.get(
            f"/api/v1/students/{student.id}/token/history", headers=admin_headers
        )

        assert response.status_code == 200
        data = response.json()
        assert data["tokens_remaining"] == 1
        assert [(e["reason"], e["delta"]) for e in data["items"]] == [
            ("bid", -1),
            ("admin_restore", 1),
        ]
        assert data["items"][1]["note"] == "Bid by mistake"
        assert all(e["opportunity_id"] == open_opportunity.id for e in data["items"])

    async def test_token_history_requires_admin(self, client: AsyncClient, create_students):
        student = (await create_students(1))[0]
        response = await client.get(f"/api/v1/students/{student.id}/token/history")
        assert response.status_code == 401


async def test_health(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
