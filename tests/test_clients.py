"""
Tests for the client registry — CPF/CNPJ validation, lookup-or-create, audited edits.
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from backoffice.models.activity_log import ActivityLog
from backoffice.models.client import Client
from backoffice.models.notification import Notification
from backoffice.models.project import Project
from backoffice.services.clients import (
    find_by_contact, normalize_document, validate_cnpj, validate_cpf, validate_document, split_name,
)
from backoffice.errors import ValidationError

CPF = "529.982.247-25"
CNPJ = "11.222.333/0001-81"


class TestDocuments:
    def test_valid_cpf(self):
        assert validate_cpf(CPF)
        assert validate_cpf("52998224725")

    def test_valid_cnpj(self):
        assert validate_cnpj(CNPJ)

    @pytest.mark.parametrize("value", ["52998224724", "11111111111", "123", ""])
    def test_invalid_cpf(self, value):
        assert not validate_cpf(value)

    def test_invalid_cnpj(self):
        assert not validate_cnpj("11222333000182")
        assert not validate_cnpj("00000000000000")

    def test_normalize(self):
        assert normalize_document(CNPJ) == "11222333000181"
        assert validate_document(CPF) == "52998224725"

    def test_required_and_checked(self):
        with pytest.raises(ValidationError, match="required"):
            validate_document("  ")
        with pytest.raises(ValidationError, match="Invalid"):
            validate_document("529.982.247-24")

    def test_split_name(self):
        assert split_name("Maria da Silva Souza") == ("Maria", "da Silva Souza")
        assert split_name("Maria") == ("Maria", "Cliente")


class TestVerify:
    async def test_registers_new_client(self, client, db_session):
        resp = await client.post("/api/v1/clients/verify", json={
            "document": CPF, "name": "Maria Souza",
            "email": "maria@cliente.example.com", "phone": "(11) 98765-4321",
        })
        assert resp.status_code == 200
        data = resp.json()
        assert data["is_new_client"] is True
        assert data["client"]["document"] == "52998224725"
        assert data["client"]["document_type"] == "cpf"
        assert data["client"]["primary_email"] == "maria@cliente.example.com"

        result = await db_session.execute(
            select(ActivityLog).where(ActivityLog.entity_type == "client", ActivityLog.action == "created")
        )
        assert result.scalar_one().actor == "client:Maria Souza"

    async def test_existing_client_is_not_overwritten(self, client):
        await client.post("/api/v1/clients/verify", json={"document": CNPJ, "name": "Loja Azul Ltda"})
        resp = await client.post(
            "/api/v1/clients/verify", json={"document": "11222333000181", "name": "Outro Nome"},
        )
        data = resp.json()
        assert data["is_new_client"] is False
        assert data["client"]["name"] == "Loja Azul Ltda"
        assert data["client"]["document_type"] == "cnpj"

    async def test_bad_check_digits(self, client, db_session):
        resp = await client.post("/api/v1/clients/verify", json={"document": "52998224724", "name": "X"})
        assert resp.status_code == 400
        assert (await db_session.execute(select(Client))).scalars().all() == []

    async def test_name_required_for_new(self, client):
        resp = await client.post("/api/v1/clients/verify", json={"document": CPF})
        assert resp.status_code == 400


class TestStaffRegistry:
    async def test_create_and_duplicate(self, client, headers):
        body = {"document": CPF, "name": "Maria Souza", "company": "Souza Doces"}
        resp = await client.post("/api/v1/clients", json=body, headers=headers["manager"])
        assert resp.status_code == 201
        assert resp.json()["company"] == "Souza Doces"

        again = await client.post("/api/v1/clients", json=body, headers=headers["manager"])
        assert again.status_code == 409

    async def test_search(self, client, headers):
        await client.post("/api/v1/clients", json={"document": CPF, "name": "Maria Souza"}, headers=headers["admin"])
        await client.post("/api/v1/clients", json={"document": CNPJ, "name": "Loja Azul"}, headers=headers["admin"])

        by_name = await client.get("/api/v1/clients?search=Azul", headers=headers["admin"])
        assert [c["name"] for c in by_name.json()["clients"]] == ["Loja Azul"]

        by_document = await client.get("/api/v1/clients?search=529.982", headers=headers["admin"])
        assert [c["name"] for c in by_document.json()["clients"]] == ["Maria Souza"]

    async def test_update_is_audited(self, client, headers, db_session, users):
        created = (await client.post(
            "/api/v1/clients", json={"document": CPF, "name": "Maria Souza"}, headers=headers["admin"],
        )).json()

        resp = await client.patch(
            f"/api/v1/clients/{created['id']}",
            json={"name": "Maria S. Souza", "emails": [{"address": "nova@cliente.example.com", "primary": True}]},
            headers=headers["manager"],
        )
        assert resp.status_code == 200
        assert resp.json()["first_name"] == "Maria"
        assert resp.json()["primary_email"] == "nova@cliente.example.com"

        result = await db_session.execute(
            select(ActivityLog).where(ActivityLog.entity_id == created["id"], ActivityLog.action == "updated")
        )
        entry = result.scalar_one()
        assert set(entry.changes) == {"name", "emails"}
        assert entry.changes["name"] == {"before": "Maria Souza", "after": "Maria S. Souza"}

        notes = await db_session.execute(
            select(Notification).where(Notification.user_id == users["admin"].id, Notification.category == "client")
        )
        assert len(notes.scalars().all()) == 1

    async def test_noop_update_logs_nothing(self, client, headers, db_session):
        created = (await client.post(
            "/api/v1/clients", json={"document": CPF, "name": "Maria Souza"}, headers=headers["admin"],
        )).json()
        await client.patch(f"/api/v1/clients/{created['id']}", json={"name": "Maria Souza"}, headers=headers["admin"])

        result = await db_session.execute(select(ActivityLog).where(ActivityLog.action == "updated"))
        assert result.scalars().all() == []

    async def test_customer_cannot_browse(self, client, headers):
        assert (await client.get("/api/v1/clients", headers=headers["customer"])).status_code == 403


class TestContactLookup:
    async def test_primary_email_is_case_insensitive(self, db_session):
        maria = Client(
            name="Maria Souza", first_name="Maria", last_name="Souza",
            emails=[{"address": "Maria@Cliente.example.com", "primary": True}],
        )
        db_session.add(maria)
        await db_session.commit()
        assert maria.email_key == "maria@cliente.example.com"

        found = await find_by_contact(db_session, " MARIA@cliente.example.com ", "Outra Pessoa")
        assert found.id == maria.id

    async def test_key_follows_email_edits(self, db_session):
        maria = Client(name="Maria Souza", emails=[{"address": "antigo@cliente.example.com", "primary": True}])
        db_session.add(maria)
        await db_session.commit()

        maria.emails = [
            {"address": "antigo@cliente.example.com", "primary": False},
            {"address": "novo@cliente.example.com", "primary": True},
        ]
        await db_session.commit()

        assert (await find_by_contact(db_session, "novo@cliente.example.com", None)).id == maria.id
        assert await find_by_contact(db_session, "antigo@cliente.example.com", None) is None

    async def test_falls_back_to_exact_name(self, db_session):
        db_session.add(Client(name="Loja Azul"))
        await db_session.commit()
        assert (await find_by_contact(db_session, "ninguem@example.com", "Loja Azul")).name == "Loja Azul"
        assert await find_by_contact(db_session, None, "loja azul") is None
        assert await find_by_contact(db_session, None, None) is None


async def _register(client, headers) -> dict:
    resp = await client.post("/api/v1/clients", json={"document": CPF, "name": "Maria Souza"}, headers=headers["admin"])
    return resp.json()


class TestClientProjects:
    async def test_projects_and_stats(self, client, headers, db_session):
        created = await _register(client, headers)
        db_session.add_all([
            Project(name="Site", status="development_50", progress=50, client_id=created["id"],
                    client_name="Maria Souza", budget_value=Decimal("8000.00")),
            Project(name="Loja", status="completed", progress=100, client_id=created["id"],
                    client_name="Maria Souza", budget_value=Decimal("12000.00")),
            Project(name="App", status="waiting_payment", progress=0, client_id=created["id"],
                    client_name="Maria Souza", budget_value=Decimal("5000.00")),
        ])
        await db_session.commit()

        resp = await client.get(f"/api/v1/clients/{created['id']}/projects", headers=headers["manager"])
        assert resp.status_code == 200
        data = resp.json()
        assert {p["name"] for p in data["projects"]} == {"Site", "Loja", "App"}
        assert data["stats"] == {
            "total_projects": 3, "active_projects": 1, "completed_projects": 1, "total_budget": 25000.0,
        }

    async def test_unknown_client(self, client, headers):
        assert (await client.get("/api/v1/clients/nope/projects", headers=headers["manager"])).status_code == 404


class TestDelete:
    async def test_admin_deletes_unused_client(self, client, headers, db_session):
        created = await _register(client, headers)
        resp = await client.delete(f"/api/v1/clients/{created['id']}", headers=headers["admin"])
        assert resp.status_code == 200

        assert await db_session.get(Client, created["id"], populate_existing=True) is None
        result = await db_session.execute(
            select(ActivityLog).where(ActivityLog.entity_id == created["id"], ActivityLog.action == "deleted")
        )
        entry = result.scalar_one()
        assert entry.level == "WARNING"
        assert entry.extra_data == {"document": "52998224725"}

    async def test_linked_projects_block_delete(self, client, headers, db_session):
        created = await _register(client, headers)
        db_session.add(Project(name="Site", status="planning", progress=0, client_id=created["id"]))
        await db_session.commit()

        resp = await client.delete(f"/api/v1/clients/{created['id']}", headers=headers["admin"])
        assert resp.status_code == 409
        assert "1 linked project" in resp.json()["detail"]
        assert await db_session.get(Client, created["id"], populate_existing=True) is not None

    async def test_manager_cannot_delete(self, client, headers):
        created = await _register(client, headers)
        assert (await client.delete(f"/api/v1/clients/{created['id']}", headers=headers["manager"])).status_code == 403

    async def test_unknown_client(self, client, headers):
        assert (await client.delete("/api/v1/clients/nope", headers=headers["admin"])).status_code == 404
