"""
Tests for contract issuing, the client's signed-PDF upload and staff confirmation.
"""

import os

from sqlalchemy import select

from backoffice.models.activity_log import ActivityLog
from backoffice.models.budget import Budget, Contract
from tests.conftest import reload, sent_to

PDF = b"%PDF-1.4\n1 0 obj <<>> endobj\ntrailer <<>>\n%%EOF"


async def _issue(client, headers, budget_id, **body):
    resp = await client.post(f"/api/v1/budgets/{budget_id}/contract", json=body, headers=headers["admin"])
    assert resp.status_code == 201, resp.text
    return resp.json()


async def _upload(client, contract_id, content=PDF, filename="contrato.pdf", content_type="application/pdf", **form):
    return await client.post(
        f"/api/v1/contracts/{contract_id}/sign",
        files={"file": (filename, content, content_type)},
        data=form,
    )


class TestIssue:
    async def test_issue_emails_signing_link(self, client, headers, db_session, make_budget, outbox):
        budget = await make_budget(status="accepted")
        data = await _issue(client, headers, budget.id, finalValue="12000", timeline="urgente")

        contract = data["contract"]
        assert data["email_sent"] is True
        assert data["sign_url"] == f"https://app.example.com/contrato/assinatura/{contract['id']}"
        assert contract["status"] == "sent"
        assert contract["sent_at"] is not None
        assert contract["terms"]["final_value"] == "12000.00"
        assert sent_to(outbox) == ["maria@cliente.example.com"]

        budget = await reload(db_session, Budget, budget.id)
        assert budget.status == "contract_sent"
        assert budget.timeline == "urgente"

    async def test_reissue_resets_same_contract(self, client, headers, make_budget):
        budget = await make_budget(status="accepted")
        first = (await _issue(client, headers, budget.id))["contract"]
        second = (await _issue(client, headers, budget.id, sendByEmail=False))["contract"]

        assert second["id"] == first["id"]
        assert second["status"] == "draft"
        assert second["sent_at"] is None

    async def test_requires_accepted_budget(self, client, headers, make_budget):
        budget = await make_budget(status="sent")
        resp = await client.post(f"/api/v1/budgets/{budget.id}/contract", json={}, headers=headers["admin"])
        assert resp.status_code == 409

    async def test_get_for_budget(self, client, headers, make_budget):
        budget = await make_budget(status="accepted")
        assert (await client.get(f"/api/v1/budgets/{budget.id}/contract", headers=headers["admin"])).status_code == 404
        await _issue(client, headers, budget.id)
        resp = await client.get(f"/api/v1/budgets/{budget.id}/contract", headers=headers["admin"])
        assert resp.status_code == 200
        assert resp.json()["budget_id"] == budget.id


class TestUpload:
    async def test_upload_signs_contract(self, client, headers, db_session, make_budget, test_settings):
        budget = await make_budget(status="accepted")
        contract_id = (await _issue(client, headers, budget.id))["contract"]["id"]

        resp = await _upload(client, contract_id, signature_name="Maria Souza")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "signed_by_client"
        assert data["document_url"].startswith(f"/contratos/contrato_{contract_id}_")
        assert data["document_url"].endswith(".pdf")

        stored = os.path.join(test_settings.upload_dir, data["document_url"].rsplit("/", 1)[1])
        with open(stored, "rb") as fh:
            assert fh.read() == PDF

        contract = await reload(db_session, Contract, contract_id)
        assert contract.signed_by_client_at is not None
        assert contract.signature_name == "Maria Souza"
        assert (await reload(db_session, Budget, budget.id)).status == "contract_signed"

    async def test_second_upload_conflicts_and_keeps_document(self, client, headers, db_session, make_budget):
        budget = await make_budget(status="accepted")
        contract_id = (await _issue(client, headers, budget.id))["contract"]["id"]

        first = await _upload(client, contract_id)
        assert first.status_code == 200

        second = await _upload(client, contract_id, content=b"%PDF-1.4 other", filename="outro.pdf")
        assert second.status_code == 409
        assert "already been signed" in second.json()["detail"]

        contract = await reload(db_session, Contract, contract_id)
        assert contract.document_url == first.json()["document_url"]
        assert contract.document_name == "contrato.pdf"

    async def test_pdf_only(self, client, headers, make_budget):
        budget = await make_budget(status="accepted")
        contract_id = (await _issue(client, headers, budget.id))["contract"]["id"]
        resp = await _upload(client, contract_id, content=b"hello", filename="contrato.docx", content_type="application/msword")
        assert resp.status_code == 400

    async def test_pdf_by_extension(self, client, headers, make_budget):
        budget = await make_budget(status="accepted")
        contract_id = (await _issue(client, headers, budget.id))["contract"]["id"]
        resp = await _upload(client, contract_id, content_type="application/octet-stream")
        assert resp.status_code == 200

    async def test_file_required(self, client, headers, make_budget):
        budget = await make_budget(status="accepted")
        contract_id = (await _issue(client, headers, budget.id))["contract"]["id"]
        resp = await client.post(f"/api/v1/contracts/{contract_id}/sign", data={"signature_name": "Maria"})
        assert resp.status_code == 400

    async def test_overlay_leaves_paid_budget_alone(self, client, headers, db_session, make_budget):
        budget = await make_budget(status="accepted")
        contract_id = (await _issue(client, headers, budget.id))["contract"]["id"]
        await db_session.execute(
            Budget.__table__.update().where(Budget.id == budget.id).values(status="down_payment_paid")
        )
        await db_session.commit()

        assert (await _upload(client, contract_id)).status_code == 200
        assert (await reload(db_session, Budget, budget.id)).status == "down_payment_paid"

    async def test_public_view(self, client, headers, make_budget):
        budget = await make_budget(status="accepted")
        contract_id = (await _issue(client, headers, budget.id))["contract"]["id"]
        resp = await client.get(f"/api/v1/contracts/{contract_id}")
        assert resp.status_code == 200
        assert resp.json()["status"] == "sent"
        assert (await client.get("/api/v1/contracts/missing")).status_code == 404


class TestConfirm:
    async def test_confirm_signed(self, client, headers, db_session, make_budget):
        budget = await make_budget(status="accepted")
        contract_id = (await _issue(client, headers, budget.id))["contract"]["id"]
        await _upload(client, contract_id)

        resp = await client.post(f"/api/v1/budgets/{budget.id}/contract/confirm", headers=headers["manager"])
        assert resp.status_code == 200
        contract = resp.json()["contract"]
        assert contract["status"] == "confirmed"
        assert contract["confirmed"] is True
        assert contract["signed_at"] is not None

    async def test_confirm_without_signature_is_flagged(self, client, headers, db_session, make_budget):
        budget = await make_budget(status="accepted")
        contract_id = (await _issue(client, headers, budget.id))["contract"]["id"]

        resp = await client.post(f"/api/v1/budgets/{budget.id}/contract/confirm", headers=headers["admin"])
        assert resp.status_code == 200

        result = await db_session.execute(
            select(ActivityLog).where(ActivityLog.entity_id == contract_id, ActivityLog.action == "confirmed")
        )
        entry = result.scalar_one()
        assert entry.level == "WARNING"
        assert entry.extra_data["client_signed"] is False

        # Confirmed contracts can no longer be uploaded
        assert (await _upload(client, contract_id)).status_code == 409

    async def test_confirm_without_contract(self, client, headers, make_budget):
        budget = await make_budget(status="accepted")
        resp = await client.post(f"/api/v1/budgets/{budget.id}/contract/confirm", headers=headers["admin"])
        assert resp.status_code == 404
