"""
Studio Back-Office — Budget & approval Pydantic schemas.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from backoffice.models.budget import Budget
from backoffice.schemas import iso, money
from backoffice.schemas.contract import contract_to_response, payment_to_response


# ── Intake ──────────────────────────────────────────────
class BudgetCreateRequest(BaseModel):
    name: Optional[str] = Field(None, max_length=200)
    email: Optional[str] = Field(None, max_length=200)
    phone: Optional[str] = Field(None, max_length=30)
    company: Optional[str] = Field(None, max_length=200)
    project_type: Optional[str] = Field(None, alias="projectType", max_length=100)
    complexity: Optional[str] = None
    timeline: Optional[str] = None
    pages: Optional[int] = Field(None, ge=1)
    features: list[str] = []
    details: Optional[str] = Field(None, max_length=5000)
    estimated_min: Optional[Decimal] = Field(None, alias="estimatedMin")
    estimated_max: Optional[Decimal] = Field(None, alias="estimatedMax")

    model_config = {"populate_by_name": True}


class BudgetUpdateRequest(BaseModel):
    final_value: Optional[Decimal] = Field(None, alias="finalValue")
    estimated_min: Optional[Decimal] = Field(None, alias="estimatedMin")
    estimated_max: Optional[Decimal] = Field(None, alias="estimatedMax")
    complexity: Optional[str] = None
    timeline: Optional[str] = None
    pages: Optional[int] = Field(None, ge=1)
    details: Optional[str] = None

    model_config = {"populate_by_name": True}


# ── Proposal / approval ─────────────────────────────────
class SendProposalRequest(BaseModel):
    send_by_email: bool = Field(True, alias="sendByEmail")
    send_by_whatsapp: bool = Field(True, alias="sendByWhatsApp")
    message: Optional[str] = Field(None, max_length=2000)

    model_config = {"populate_by_name": True}


class ApprovalResponseRequest(BaseModel):
    accepted: Optional[bool] = None


class StaffDecisionRequest(BaseModel):
    action: Optional[str] = None
    reason: Optional[str] = Field(None, max_length=2000)


def budget_to_response(b: Budget, detail: bool = False) -> dict:
    """Convert a Budget ORM object to a response dict."""
    data = {
        "id": b.id,
        "status": b.status,
        "client_name": b.client_name,
        "client_email": b.client_email,
        "client_phone": b.client_phone or "",
        "company": b.company or "",
        "project_type": b.project_type,
        "complexity": b.complexity,
        "timeline": b.timeline,
        "pages": b.pages,
        "features": b.features or [],
        "details": b.details or "",
        "estimated_min": money(b.estimated_min),
        "estimated_max": money(b.estimated_max),
        "final_value": money(b.final_value),
        "project_id": b.project_id,
        "user_id": b.user_id,
        "user_approved_at": iso(b.user_approved_at),
        "accepted_by": b.accepted_by,
        "accepted_at": iso(b.accepted_at),
        "declined_by": b.declined_by,
        "declined_at": iso(b.declined_at),
        "decline_reason": b.decline_reason,
        "created_at": iso(b.created_at),
        "updated_at": iso(b.updated_at),
    }
    if detail:
        data["contract"] = contract_to_response(b.contract) if b.contract else None
        data["payments"] = [payment_to_response(p) for p in b.payments or []]
    return data


def public_budget_view(b: Budget) -> dict:
    """What the client sees behind the approval link."""
    return {
        "id": b.id,
        "status": b.status,
        "client_name": b.client_name,
        "project_type": b.project_type,
        "timeline": b.timeline,
        "pages": b.pages,
        "features": b.features or [],
        "details": b.details or "",
        "final_value": money(b.final_value),
        "expires_at": iso(b.approval_token_expires),
    }
