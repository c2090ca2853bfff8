"""
Studio Back-Office — Budget API routes (intake, proposal, approval link, staff decision).
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.auth import (
    Caller, get_optional_caller, require_admin, require_budget_manager, require_project_manager,
)
from backoffice.database import get_db
from backoffice.schemas.budget import (
    BudgetCreateRequest, BudgetUpdateRequest, SendProposalRequest,
    ApprovalResponseRequest, StaffDecisionRequest,
    budget_to_response, public_budget_view,
)
from backoffice.schemas.project import project_to_response
from backoffice.services import budgets as budget_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/budgets", tags=["budgets"])
approval_router = APIRouter(prefix="/approvals", tags=["approvals"])


# ═══════════════════════════════════════════════════════
#  Intake & CRUD
# ═══════════════════════════════════════════════════════

@router.post("", status_code=201)
async def create_budget(
    req: BudgetCreateRequest,
    caller: Optional[Caller] = Depends(get_optional_caller),
    db: AsyncSession = Depends(get_db),
):
    """Public budget request form."""
    budget = await budget_service.create_budget(db, req.model_dump(), requester=caller)
    return budget_to_response(budget)


@router.get("")
async def list_budgets(
    status: str | None = Query(None, description="Filter by status"),
    limit: int = Query(100, ge=1, le=500),
    caller: Caller = Depends(require_budget_manager),
    db: AsyncSession = Depends(get_db),
):
    budgets = await budget_service.list_budgets(db, status=status, limit=limit)
    return {"budgets": [budget_to_response(b) for b in budgets], "total": len(budgets)}


@router.get("/{budget_id}")
async def get_budget(
    budget_id: str,
    caller: Caller = Depends(require_budget_manager),
    db: AsyncSession = Depends(get_db),
):
    budget = await budget_service.get_budget(db, budget_id)
    return budget_to_response(budget, detail=True)


@router.patch("/{budget_id}")
async def update_budget(
    budget_id: str,
    req: BudgetUpdateRequest,
    caller: Caller = Depends(require_budget_manager),
    db: AsyncSession = Depends(get_db),
):
    budget = await budget_service.update_budget(db, budget_id, caller, req.model_dump())
    return budget_to_response(budget, detail=True)


@router.delete("/{budget_id}")
async def delete_budget(
    budget_id: str,
    reason: str | None = Query(None, description="Why the budget is being deleted"),
    caller: Caller = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await budget_service.delete_budget(db, budget_id, caller, reason)
    return {"success": True, "message": "Budget deleted"}


# ═══════════════════════════════════════════════════════
#  Proposal & staff decision
# ═══════════════════════════════════════════════════════

@router.post("/{budget_id}/send-proposal")
async def send_proposal(
    budget_id: str,
    req: SendProposalRequest | None = None,
    caller: Caller = Depends(require_budget_manager),
    db: AsyncSession = Depends(get_db),
):
    req = req or SendProposalRequest()
    return await budget_service.send_proposal(
        db, budget_id, caller,
        send_by_email=req.send_by_email,
        send_by_whatsapp=req.send_by_whatsapp,
        message=req.message,
    )


@router.post("/{budget_id}/decision")
async def staff_decision(
    budget_id: str,
    req: StaffDecisionRequest,
    caller: Caller = Depends(require_budget_manager),
    db: AsyncSession = Depends(get_db),
):
    budget = await budget_service.staff_decide(db, budget_id, caller, req.action, req.reason)
    return budget_to_response(budget)


@router.post("/{budget_id}/start-project", status_code=201)
async def start_project(
    budget_id: str,
    caller: Caller = Depends(require_project_manager),
    db: AsyncSession = Depends(get_db),
):
    project = await budget_service.start_project(db, budget_id, caller)
    return project_to_response(project)


# ═══════════════════════════════════════════════════════
#  Client approval link (public)
# ═══════════════════════════════════════════════════════

@approval_router.get("/{token}")
async def view_proposal(token: str, db: AsyncSession = Depends(get_db)):
    budget = await budget_service.get_budget_by_token(db, token)
    return public_budget_view(budget)


@approval_router.put("/{token}")
async def respond_to_proposal(
    token: str,
    req: ApprovalResponseRequest,
    db: AsyncSession = Depends(get_db),
):
    budget = await budget_service.respond_via_token(db, token, req.accepted)
    return {
        "success": True,
        "status": budget.status,
        "message": "Proposta aceita" if budget.status == "accepted" else "Proposta recusada",
    }
