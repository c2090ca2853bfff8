"""
Tests for budget intake, proposal links, client approval and staff decisions.
"""

from datetime import timedelta
from decimal import Decimal

from sqlalchemy import select

from backoffice.lifecycle import utcnow
from backoffice.models.activity_log import ActivityLog
from backoffice.models.budget import Budget, Payment
from backoffice.models.notification import Notification
from backoffice.models.project import Project
from tests.conftest import reload, sent_to


INTAKE = {
    "name": "Maria Souza",
    "email": "maria@cliente.example.com",
    "phone": "(11) 98765-4321",
    "projectType": "Loja virtual",
    "details": "Catálogo com 40 produtos",
}


async def _send_proposal(client, headers, budget_id, **body) -> dict:
    resp = await client.post(
        f"/api/v1/budgets/{budget_id}/send-proposal", json=body, headers=headers["manager"],
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


class TestIntake:
    async def test_public_create(self, client, db_session, users):
        resp = await client.post("/api/v1/budgets", json=INTAKE)
        assert resp.status_code == 201
        data = resp.json()
        assert data["status"] == "pending"
        assert data["complexity"] == "medio"
        assert data["timeline"] == "normal"
        assert data["pages"] == 1

        result = await db_session.execute(select(Notification).where(Notification.user_id == users["admin"].id))
        assert [n.category for n in result.scalars().all()] == ["budget"]

    async def test_required_fields(self, client):
        resp = await client.post("/api/v1/budgets", json={**INTAKE, "name": "  "})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Name is required"

        resp = await client.post("/api/v1/budgets", json={k: v for k, v in INTAKE.items() if k != "projectType"})
        assert resp.status_code == 400

    async def test_logged_in_requester_is_recorded(self, client, headers, users):
        resp = await client.post("/api/v1/budgets", json=INTAKE, headers=headers["customer"])
        assert resp.status_code == 201

        assert resp.json()["user_id"] == users["customer"].id


class TestAccess:
    async def test_listing_requires_token(self, client):
        resp = await client.get("/api/v1/budgets")
        assert resp.status_code == 401

    async def test_customer_and_plain_member_forbidden(self, client, headers):
        assert (await client.get("/api/v1/budgets", headers=headers["customer"])).status_code == 403
        assert (await client.get("/api/v1/budgets", headers=headers["member"])).status_code == 403

    async def test_project_manager_allowed(self, client, headers, make_budget):
        await make_budget()
        resp = await client.get("/api/v1/budgets?status=pending", headers=headers["manager"])
        assert resp.status_code == 200
        assert resp.json()["total"] == 1

    async def test_garbage_token(self, client):
        resp = await client.get("/api/v1/budgets", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401


class TestProposal:
    async def test_send_proposal(self, client, headers, make_budget, outbox):
        budget = await make_budget()
        data = await _send_proposal(client, headers, budget.id)

        assert data["approval_url"].startswith("https://app.example.com/orcamento/aprovar/")
        assert data["email_sent"] is True
        assert data["whatsapp_url"].startswith("https://wa.me/5511987654321?text=")
        assert sent_to(outbox) == ["maria@cliente.example.com"]

    async def test_resend_replaces_token(self, client, headers, make_budget):
        budget = await make_budget()
        first = (await _send_proposal(client, headers, budget.id))["approval_url"].rsplit("/", 1)[1]
        second = (await _send_proposal(client, headers, budget.id))["approval_url"].rsplit("/", 1)[1]
        assert first != second

        assert (await client.get(f"/api/v1/approvals/{first}")).status_code == 404
        assert (await client.get(f"/api/v1/approvals/{second}")).status_code == 200

    async def test_cannot_send_after_answer(self, client, headers, make_budget):
        budget = await make_budget(status="accepted")
        resp = await client.post(f"/api/v1/budgets/{budget.id}/send-proposal", json={}, headers=headers["admin"])
        assert resp.status_code == 409


class TestApprovalToken:
    async def test_accept_once(self, client, headers, db_session, make_budget):
        budget = await make_budget()
        token = (await _send_proposal(client, headers, budget.id))["approval_url"].rsplit("/", 1)[1]

        view = await client.get(f"/api/v1/approvals/{token}")
        assert view.status_code == 200
        assert view.json()["final_value"] == 10000.0

        resp = await client.put(f"/api/v1/approvals/{token}", json={"accepted": True})
        assert resp.status_code == 200
        assert resp.json()["status"] == "accepted"

        budget = await reload(db_session, Budget, budget.id)
        assert budget.status == "accepted"
        assert budget.user_approved_at is not None
        assert budget.approval_token is None
        assert budget.approval_token_expires is None

        replay = await client.put(f"/api/v1/approvals/{token}", json={"accepted": False})
        assert replay.status_code == 409
        assert (await client.get(f"/api/v1/approvals/{token}")).status_code == 409
        assert (await reload(db_session, Budget, budget.id)).status == "accepted"

    async def test_reject_leaves_approval_time_empty(self, client, headers, db_session, make_budget):
        budget = await make_budget()
        token = (await _send_proposal(client, headers, budget.id))["approval_url"].rsplit("/", 1)[1]

        resp = await client.put(f"/api/v1/approvals/{token}", json={"accepted": False})
        assert resp.json()["status"] == "rejected"
        budget = await reload(db_session, Budget, budget.id)
        assert budget.user_approved_at is None

    async def test_unknown_token(self, client):
        assert (await client.put("/api/v1/approvals/does-not-exist", json={"accepted": True})).status_code == 404

    async def test_expired_token(self, client, db_session, make_budget):
        budget = await make_budget(
            status="sent",
            approval_token="expired-token",
            approval_token_expires=utcnow() - timedelta(minutes=1),
        )
        resp = await client.put("/api/v1/approvals/expired-token", json={"accepted": True})
        assert resp.status_code == 400
        assert "expired" in resp.json()["detail"]
        assert (await reload(db_session, Budget, budget.id)).status == "sent"

    async def test_accepted_is_required(self, client, make_budget):
        await make_budget(
            status="sent", approval_token="live-token",
            approval_token_expires=utcnow() + timedelta(days=1),
        )
        resp = await client.put("/api/v1/approvals/live-token", json={})
        assert resp.status_code == 400


class TestStaffDecision:
    async def test_accept_then_decline_last_write_wins(self, client, headers, db_session, users, make_budget):
        budget = await make_budget(user_id=users["customer"].id)

        resp = await client.post(
            f"/api/v1/budgets/{budget.id}/decision", json={"action": "accept"}, headers=headers["manager"],
        )
        assert resp.status_code == 200
        assert resp.json()["accepted_by"] == users["manager"].id

        resp = await client.post(
            f"/api/v1/budgets/{budget.id}/decision",
            json={"action": "decline", "reason": "Fora do escopo"},
            headers=headers["admin"],
        )
        assert resp.status_code == 200

        budget = await reload(db_session, Budget, budget.id)
        assert budget.status == "pending"
        assert budget.declined_by == users["admin"].id
        assert budget.decline_reason == "Fora do escopo"
        assert budget.accepted_by is None
        assert budget.accepted_at is None

        result = await db_session.execute(
            select(Notification).where(Notification.user_id == users["customer"].id)
        )
        assert len(result.scalars().all()) == 2

    async def test_invalid_action(self, client, headers, make_budget):
        budget = await make_budget()
        resp = await client.post(
            f"/api/v1/budgets/{budget.id}/decision", json={"action": "approve"}, headers=headers["admin"],
        )
        assert resp.status_code == 400

    async def test_only_pending(self, client, headers, make_budget):
        budget = await make_budget(status="sent")
        resp = await client.post(
            f"/api/v1/budgets/{budget.id}/decision", json={"action": "accept"}, headers=headers["admin"],
        )
        assert resp.status_code == 409


class TestDelete:
    async def test_reason_required(self, client, headers, make_budget):
        budget = await make_budget()
        resp = await client.delete(f"/api/v1/budgets/{budget.id}", headers=headers["admin"])
        assert resp.status_code == 400

    async def test_admin_only(self, client, headers, make_budget):
        budget = await make_budget()
        resp = await client.delete(f"/api/v1/budgets/{budget.id}?reason=duplicado", headers=headers["manager"])
        assert resp.status_code == 403

    async def test_delete_records_reason(self, client, headers, db_session, make_budget):
        budget = await make_budget()
        resp = await client.delete(f"/api/v1/budgets/{budget.id}?reason=Pedido duplicado", headers=headers["admin"])
        assert resp.status_code == 200

        assert (await client.get(f"/api/v1/budgets/{budget.id}", headers=headers["admin"])).status_code == 404
        result = await db_session.execute(
            select(ActivityLog).where(ActivityLog.entity_id == budget.id, ActivityLog.action == "deleted")
        )
        entry = result.scalar_one()
        assert entry.extra_data["deletion_reason"] == "Pedido duplicado"

    async def test_paid_budget_is_kept(self, client, headers, db_session, make_budget):
        budget = await make_budget(status="down_payment_paid")
        db_session.add(Payment(budget_id=budget.id, type="down_payment", status="paid", amount=Decimal("2500")))
        await db_session.commit()

        resp = await client.delete(f"/api/v1/budgets/{budget.id}?reason=teste", headers=headers["admin"])
        assert resp.status_code == 409


class TestStartProject:
    async def test_manual_start(self, client, headers, db_session, make_budget):
        budget = await make_budget(status="accepted")
        resp = await client.post(f"/api/v1/budgets/{budget.id}/start-project", headers=headers["member"])
        assert resp.status_code == 201
        data = resp.json()
        assert data["status"] == "waiting_payment"
        assert data["complexity"] == "medium"
        assert data["name"] == "Site institucional - Maria Souza"

        budget = await reload(db_session, Budget, budget.id)
        assert budget.project_id == data["id"]

        again = await client.post(f"/api/v1/budgets/{budget.id}/start-project", headers=headers["member"])
        assert again.status_code == 409

    async def test_requires_acceptance(self, client, headers, db_session, make_budget):
        budget = await make_budget(status="sent")
        resp = await client.post(f"/api/v1/budgets/{budget.id}/start-project", headers=headers["admin"])
        assert resp.status_code == 409
        result = await db_session.execute(select(Project))
        assert result.scalars().all() == []
