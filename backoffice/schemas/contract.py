"""
Studio Back-Office — Contract & Payment Pydantic schemas.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from backoffice.models.budget import Contract, Payment
from backoffice.schemas import iso, money


# ── Contract ────────────────────────────────────────────
class ContractIssueRequest(BaseModel):
    final_value: Optional[Decimal] = Field(None, alias="finalValue")
    timeline: Optional[str] = None
    details: Optional[str] = Field(None, max_length=5000)
    send_by_email: bool = Field(True, alias="sendByEmail")

    model_config = {"populate_by_name": True}


def contract_to_response(c: Contract) -> dict:
    return {
        "id": c.id,
        "budget_id": c.budget_id,
        "project_id": c.project_id,
        "status": c.status,
        "terms": c.extra_data or {},
        "document_url": c.document_url,
        "document_name": c.document_name,
        "signature_name": c.signature_name,
        "signed_by_client_at": iso(c.signed_by_client_at),
        "confirmed": bool(c.confirmed),
        "signed_at": iso(c.signed_at),
        "sent_at": iso(c.sent_at),
        "created_at": iso(c.created_at),
    }


def public_contract_view(c: Contract) -> dict:
    """What the client sees on the signing page."""
    return {
        "id": c.id,
        "status": c.status,
        "terms": c.extra_data or {},
        "document_url": c.document_url,
        "signed_by_client_at": iso(c.signed_by_client_at),
    }


# ── Payment ─────────────────────────────────────────────
class PaymentLinkRequest(BaseModel):
    send_by_email: bool = Field(False, alias="sendByEmail")

    model_config = {"populate_by_name": True}


class PaymentVerifyRequest(BaseModel):
    session_id: Optional[str] = Field(None, max_length=255)
    budget_id: Optional[str] = Field(None, max_length=36)


def payment_to_response(p: Payment) -> dict:
    return {
        "id": p.id,
        "budget_id": p.budget_id,
        "project_id": p.project_id,
        "type": p.type,
        "status": p.status,
        "amount": money(p.amount),
        "description": p.description,
        "payment_link_url": p.payment_link_url,
        "stripe_payment_link_id": p.stripe_payment_link_id,
        "stripe_payment_id": p.stripe_payment_id,
        "due_date": iso(p.due_date),
        "paid_at": iso(p.paid_at),
        "created_at": iso(p.created_at),
    }
